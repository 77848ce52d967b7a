"""Command line interface for tin."""

from __future__ import annotations

import logging
import sqlite3
import sys
from contextlib import contextmanager
from typing import Iterator

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import (
    Config,
    EmbeddingSettings,
    load_config,
    resolve_embedding_settings,
    resolve_rerank_settings,
)
from .errors import TinError, UsageError
from .output import (
    print_files,
    print_json,
    print_warnings,
    render_index_summary,
    render_refresh_summary,
    render_results,
    render_status,
    styled,
)
from .project import ProjectPaths, init_project, require_project
from .search import SearchResult
from .services.index_service import IndexStats, index_project
from .services.search_service import hybrid_query, keyword_search, vector_search
from .services.status_service import get_project_status
from .text import Messages, Styles
from .utils import ensure_positive

HUMAN_MAX_RESULTS = 5
MACHINE_MAX_RESULTS = 20
DEFAULT_MIN_SCORE = 0.0
DEFAULT_VSEARCH_MIN_SCORE = 0.3

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"tin v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logger = logging.getLogger("tin")
    logger.setLevel(logging.DEBUG)
    logger.handlers = [
        RichHandler(console=Console(stderr=True), show_path=False, markup=False)
    ]
    logger.propagate = False


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", help=Messages.HELP_VERBOSE),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Global Typer callback for shared options."""
    _configure_logging(verbose)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except TinError as exc:
        err_console.print(styled(str(exc), Styles.ERROR))
        raise typer.Exit(code=exc.exit_code)
    except sqlite3.Error as exc:
        err_console.print(styled(Messages.ERROR_STORAGE.format(reason=exc), Styles.ERROR))
        raise typer.Exit(code=1)


def _load_project() -> tuple[ProjectPaths, Config, EmbeddingSettings]:
    project = require_project()
    config = load_config(project.config_path)
    settings = resolve_embedding_settings(config)
    return project, config, settings


def _resolve_output(
    json_output: bool,
    files_output: bool,
    max_results: int | None,
) -> int:
    if json_output and files_output:
        raise UsageError(Messages.ERROR_OUTPUT_CONFLICT)
    if max_results is None:
        return MACHINE_MAX_RESULTS if (json_output or files_output) else HUMAN_MAX_RESULTS
    try:
        return ensure_positive(max_results, "--max-results")
    except ValueError as exc:
        raise UsageError(str(exc)) from exc


def _refresh_before_search(
    project: ProjectPaths,
    config: Config,
    settings: EmbeddingSettings,
    *,
    quiet: bool,
) -> IndexStats:
    stats = index_project(project, config, settings=settings, embed_best_effort=True)
    print_warnings(err_console, stats.warnings)
    if not quiet:
        status = get_project_status(project, settings)
        render_refresh_summary(console, stats, status)
    return stats


def _emit_results(
    query: str,
    results: list[SearchResult],
    *,
    json_output: bool,
    files_output: bool,
) -> None:
    if json_output:
        print_json([result.to_dict() for result in results])
        return
    if files_output:
        print_files(results)
        return
    render_results(console, query, results)


@app.command(help=Messages.HELP_INIT)
def init(
    json_output: bool = typer.Option(False, "--json", help=Messages.HELP_JSON),
) -> None:
    with _handle_errors():
        result = init_project()
    paths = result.paths
    if json_output:
        print_json(
            {
                "root": str(paths.root),
                "tin_dir": str(paths.tin_dir),
                "config_path": str(paths.config_path),
                "created_dir": result.created_dir,
                "created_config": result.created_config,
            }
        )
        return
    if result.created_dir:
        console.print(styled(Messages.INFO_INIT_CREATED.format(path=paths.root), Styles.SUCCESS))
    else:
        console.print(styled(Messages.INFO_INIT_EXISTS.format(path=paths.root), Styles.INFO))
    if result.created_config:
        console.print(styled(Messages.INFO_CONFIG_CREATED.format(path=paths.config_path), Styles.INFO))


@app.command(help=Messages.HELP_INDEX)
def index(
    embed: bool | None = typer.Option(None, "--embed/--no-embed", help=Messages.HELP_EMBED),
    force: bool = typer.Option(False, "--force", help=Messages.HELP_FORCE),
    reembed: bool = typer.Option(False, "--reembed", help=Messages.HELP_REEMBED),
    json_output: bool = typer.Option(False, "--json", help=Messages.HELP_JSON),
) -> None:
    with _handle_errors():
        project, config, settings = _load_project()
        if reembed and embed is None:
            embed = True
        stats = index_project(
            project,
            config,
            settings=settings,
            embed=embed,
            force=force,
            reembed=reembed,
        )
    print_warnings(err_console, stats.warnings)
    if json_output:
        print_json(stats.to_dict())
        return
    render_index_summary(console, stats)


@app.command(help=Messages.HELP_SEARCH)
def search(
    query: str = typer.Argument(..., help=Messages.HELP_QUERY),
    json_output: bool = typer.Option(False, "--json", help=Messages.HELP_JSON),
    files_output: bool = typer.Option(False, "--files", help=Messages.HELP_FILES),
    max_results: int | None = typer.Option(
        None, "--max-results", "-n", help=Messages.HELP_MAX_RESULTS
    ),
    min_score: float = typer.Option(
        DEFAULT_MIN_SCORE, "--min-score", min=0.0, help=Messages.HELP_MIN_SCORE
    ),
) -> None:
    with _handle_errors():
        limit = _resolve_output(json_output, files_output, max_results)
        project, config, settings = _load_project()
        quiet = json_output or files_output
        _refresh_before_search(project, config, settings, quiet=quiet)
        results = keyword_search(project, query, limit=limit, min_score=min_score)
    _emit_results(query, results, json_output=json_output, files_output=files_output)


@app.command(help=Messages.HELP_VSEARCH)
def vsearch(
    query: str = typer.Argument(..., help=Messages.HELP_QUERY),
    json_output: bool = typer.Option(False, "--json", help=Messages.HELP_JSON),
    files_output: bool = typer.Option(False, "--files", help=Messages.HELP_FILES),
    max_results: int | None = typer.Option(
        None, "--max-results", "-n", help=Messages.HELP_MAX_RESULTS
    ),
    min_score: float = typer.Option(
        DEFAULT_VSEARCH_MIN_SCORE, "--min-score", min=0.0, help=Messages.HELP_MIN_SCORE
    ),
) -> None:
    with _handle_errors():
        limit = _resolve_output(json_output, files_output, max_results)
        project, config, settings = _load_project()
        quiet = json_output or files_output
        _refresh_before_search(project, config, settings, quiet=quiet)
        results = vector_search(
            project,
            query,
            settings,
            limit=limit,
            min_score=min_score,
            full_chunk=json_output,
        )
    _emit_results(query, results, json_output=json_output, files_output=files_output)


@app.command("query", help=Messages.HELP_QUERY_COMMAND)
def query_command(
    query: str = typer.Argument(..., help=Messages.HELP_QUERY),
    json_output: bool = typer.Option(False, "--json", help=Messages.HELP_JSON),
    files_output: bool = typer.Option(False, "--files", help=Messages.HELP_FILES),
    max_results: int | None = typer.Option(
        None, "--max-results", "-n", help=Messages.HELP_MAX_RESULTS
    ),
    min_score: float = typer.Option(
        DEFAULT_MIN_SCORE, "--min-score", min=0.0, help=Messages.HELP_MIN_SCORE
    ),
    no_rerank: bool = typer.Option(False, "--no-rerank", help=Messages.HELP_NO_RERANK),
) -> None:
    with _handle_errors():
        limit = _resolve_output(json_output, files_output, max_results)
        project, config, settings = _load_project()
        rerank_settings = resolve_rerank_settings(config)
        quiet = json_output or files_output
        _refresh_before_search(project, config, settings, quiet=quiet)
        response = hybrid_query(
            project,
            query,
            settings=settings,
            rerank_settings=rerank_settings,
            fusion=config.fusion,
            limit=limit,
            min_score=min_score,
            use_rerank=not no_rerank,
        )
    print_warnings(err_console, response.warnings)
    _emit_results(query, response.results, json_output=json_output, files_output=files_output)


@app.command(help=Messages.HELP_STATUS)
def status(
    json_output: bool = typer.Option(False, "--json", help=Messages.HELP_JSON),
) -> None:
    with _handle_errors():
        project, _config, settings = _load_project()
        info = get_project_status(project, settings)
    if json_output:
        print_json(info.to_dict())
        return
    render_status(console, info)


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    app(args=args)

"""Rendering helpers for human (rich) and machine (JSON, file list) output."""

from __future__ import annotations

import json
from typing import Sequence

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .search import SearchResult
from .services.index_service import IndexStats
from .services.status_service import StatusInfo
from .text import Messages, Styles

PREVIEW_LIMIT = 80


def styled(text: str, style: str) -> str:
    return f"[{style}]{escape(text)}[/{style}]"


def print_json(data: object) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


def print_warnings(console: Console, warnings: Sequence[str]) -> None:
    for warning in warnings:
        console.print(styled(f"{Messages.WARNING_PREFIX}{warning}", Styles.WARNING))


def print_files(results: Sequence[SearchResult]) -> None:
    seen: set[str] = set()
    for result in results:
        if result.path in seen:
            continue
        seen.add(result.path)
        typer.echo(result.path)


def format_preview(text: str | None, limit: int = PREVIEW_LIMIT) -> str:
    if not text:
        return "-"
    snippet = " ".join(text.split())
    if len(snippet) <= limit:
        return snippet
    return snippet[: limit - 3].rstrip() + "..."


def format_lines(start_line: int, end_line: int) -> str:
    if end_line <= start_line:
        return f"L{start_line}"
    return f"L{start_line}-{end_line}"


def render_results(console: Console, query: str, results: Sequence[SearchResult]) -> None:
    if not results:
        console.print(styled(Messages.INFO_NO_RESULTS.format(query=query), Styles.WARNING))
        return
    console.print(styled(Messages.INFO_RESULTS_FOR.format(query=query), Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_SCORE, justify="right")
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_LINES, justify="right")
    table.add_column(Messages.TABLE_HEADER_SOURCE, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_PREVIEW, overflow="fold")
    for idx, result in enumerate(results, start=1):
        table.add_row(
            str(idx),
            f"{result.score:.3f}",
            escape(f"{result.path}:{result.line}"),
            format_lines(result.start_line, result.end_line),
            result.source,
            escape(format_preview(result.snippet)),
        )
    console.print(table)


def format_index_summary(stats: IndexStats) -> str:
    summary = Messages.INFO_INDEX_SUMMARY.format(
        scanned=stats.scanned,
        added=stats.added,
        updated=stats.updated,
        skipped=stats.skipped,
        removed=stats.removed,
    )
    if stats.errors:
        summary += Messages.INFO_INDEX_ERRORS.format(errors=stats.errors)
    return summary


def render_index_summary(console: Console, stats: IndexStats) -> None:
    console.print(styled(format_index_summary(stats), Styles.SUCCESS))
    if stats.embedding_model:
        console.print(
            styled(
                Messages.INFO_EMBEDDING_SUMMARY.format(
                    embedded=stats.embedded, model=stats.embedding_model
                ),
                Styles.INFO,
            )
        )


def render_refresh_summary(console: Console, stats: IndexStats, status: StatusInfo) -> None:
    console.print(
        styled(
            Messages.INFO_REFRESH_SUMMARY.format(
                added=stats.added,
                updated=stats.updated,
                removed=stats.removed,
                files=status.indexed_files,
                chunks=status.indexed_chunks,
            ),
            Styles.INFO,
        )
    )


def render_status(console: Console, status: StatusInfo) -> None:
    rows = (
        (Messages.STATUS_PROJECT, str(status.root)),
        (Messages.STATUS_TIN, str(status.tin_dir)),
        (Messages.STATUS_INDEX, str(status.db_path)),
        (Messages.STATUS_FILES, str(status.indexed_files)),
        (Messages.STATUS_CHUNKS, str(status.indexed_chunks)),
        (Messages.STATUS_TIME, status.last_indexed_at or Messages.STATUS_NEVER),
        (Messages.STATUS_PROVIDER, f"{status.provider} ({status.provider_source})"),
        (
            Messages.STATUS_API_URL,
            f"{status.base_url or '-'} ({status.base_url_source})",
        ),
        (Messages.STATUS_MODEL, f"{status.model} ({status.model_source})"),
        (Messages.STATUS_API_KEY, f"{status.api_key} ({status.api_key_source})"),
        (
            Messages.STATUS_EMBEDDED,
            f"{status.embedded_chunks} / {status.indexed_chunks}",
        ),
    )
    for label, value in rows:
        console.print(f"{label}: {escape(value)}", soft_wrap=True)

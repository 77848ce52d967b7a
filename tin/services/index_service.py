"""Logic helpers for the `tin index` command."""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Sequence

from ..chunks import (
    DEFAULT_CHUNK_OVERLAP_TOKENS,
    DEFAULT_CHUNK_TOKENS,
    Chunk,
    chunk_text,
    normalize_line_endings,
)
from ..config import DEFAULT_INCLUDE_GLOBS, Config, EmbeddingSettings, resolve_embedding_settings
from ..errors import ConfigError, ProviderError
from ..project import ProjectPaths
from ..search import TinEmbedder
from ..store import (
    StoredFile,
    delete_missing_files,
    list_indexed_files,
    open_store,
    replace_file_chunks,
    update_file_metadata,
    utc_now,
)
from ..text import Messages
from ..utils import collect_files, hash_content
from .embedding_service import embed_missing_chunks

logger = logging.getLogger(__name__)

CHUNKING_HASH_VERSION = "chars-v1"
DEFAULT_INDEX_CONCURRENCY = 4


@dataclass(slots=True)
class IndexStats:
    scanned: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    removed: int = 0
    errors: int = 0
    embedded: int = 0
    embedding_model: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class _FileStat:
    rel_path: str
    mtime_ms: int
    size_bytes: int
    existing: StoredFile | None


@dataclass(slots=True)
class _PreparedFile:
    entry: _FileStat
    content_hash: str = ""
    chunks: list[Chunk] = field(default_factory=list)
    blank: bool = False
    unchanged: bool = False
    error: str | None = None


def versioned_hash(content: str) -> str:
    """Tag a content digest with the chunking algorithm version."""
    return f"{CHUNKING_HASH_VERSION}:{hash_content(content)}"


def _is_fast_skip(entry: _FileStat) -> bool:
    existing = entry.existing
    if existing is None:
        return False
    return (
        existing.content_hash.startswith(f"{CHUNKING_HASH_VERSION}:")
        and existing.mtime_ms == entry.mtime_ms
        and existing.size_bytes == entry.size_bytes
    )


def _prepare_file(
    root: Path,
    entry: _FileStat,
    *,
    force: bool,
    chunk_tokens: int,
    overlap_tokens: int,
) -> _PreparedFile:
    try:
        text = (root / entry.rel_path).read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return _PreparedFile(entry=entry, error=str(exc))
    normalized = normalize_line_endings(text)
    content_hash = versioned_hash(normalized)
    existing = entry.existing
    unchanged = (
        not force and existing is not None and existing.content_hash == content_hash
    )
    if not normalized.strip():
        return _PreparedFile(entry=entry, content_hash=content_hash, blank=True)
    if unchanged:
        return _PreparedFile(entry=entry, content_hash=content_hash, unchanged=True)
    chunks = chunk_text(normalized, chunk_tokens, overlap_tokens)
    return _PreparedFile(entry=entry, content_hash=content_hash, chunks=chunks)


def _prepare_files(
    root: Path,
    entries: Sequence[_FileStat],
    *,
    force: bool,
    concurrency: int,
    chunk_tokens: int,
    overlap_tokens: int,
) -> list[_PreparedFile]:
    if not entries:
        return []

    def _prepare_one(entry: _FileStat) -> _PreparedFile:
        return _prepare_file(
            root,
            entry,
            force=force,
            chunk_tokens=chunk_tokens,
            overlap_tokens=overlap_tokens,
        )

    max_workers = max(1, min(int(concurrency or 1), len(entries)))
    if max_workers == 1:
        return [_prepare_one(entry) for entry in entries]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(_prepare_one, entries))


def _record_for(prepared: _PreparedFile) -> StoredFile:
    entry = prepared.entry
    return StoredFile(
        path=entry.rel_path,
        content_hash=prepared.content_hash,
        mtime_ms=entry.mtime_ms,
        size_bytes=entry.size_bytes,
        indexed_at=utc_now(),
    )


def index_project(
    project: ProjectPaths,
    config: Config,
    *,
    settings: EmbeddingSettings | None = None,
    embed: bool | None = None,
    force: bool = False,
    reembed: bool = False,
    embed_best_effort: bool = False,
    embedder: TinEmbedder | None = None,
    concurrency: int = DEFAULT_INDEX_CONCURRENCY,
    chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
    overlap_tokens: int = DEFAULT_CHUNK_OVERLAP_TOKENS,
) -> IndexStats:
    """Bring the index in line with the files on disk.

    Unchanged files are skipped on matching mtime and size alone. Changed
    files are read and chunked in a thread pool; every store write happens
    on this thread in scan order, one transaction per file. Files that no
    longer exist or no longer match the globs are removed afterwards.
    """

    root = project.root
    include = config.include or list(DEFAULT_INCLUDE_GLOBS)
    paths = collect_files(root, include, config.exclude)
    stats = IndexStats(scanned=len(paths))

    with open_store(project.db_path) as conn:
        known = list_indexed_files(conn)

        to_prepare: list[_FileStat] = []
        for rel_path in paths:
            try:
                stat = (root / rel_path).stat()
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", rel_path, exc)
                stats.errors += 1
                continue
            entry = _FileStat(
                rel_path=rel_path,
                mtime_ms=stat.st_mtime_ns // 1_000_000,
                size_bytes=stat.st_size,
                existing=known.get(rel_path),
            )
            if not force and _is_fast_skip(entry):
                logger.debug("Skipping unchanged %s", rel_path)
                stats.skipped += 1
                continue
            to_prepare.append(entry)

        prepared_files = _prepare_files(
            root,
            to_prepare,
            force=force,
            concurrency=concurrency,
            chunk_tokens=chunk_tokens,
            overlap_tokens=overlap_tokens,
        )
        for prepared in prepared_files:
            _apply_prepared(conn, prepared, stats)

        removed = delete_missing_files(conn, paths)
        for rel_path in removed:
            logger.debug("Removed %s from index", rel_path)
        stats.removed = len(removed)

    logger.info(
        "Index run: %d scanned, %d added, %d updated, %d skipped, %d removed, %d errors",
        stats.scanned,
        stats.added,
        stats.updated,
        stats.skipped,
        stats.removed,
        stats.errors,
    )

    if embed is False:
        return stats
    if settings is None:
        settings = resolve_embedding_settings(config)
    available = settings.configured or embedder is not None
    if embed is None and not available:
        return stats
    if not available:
        raise ConfigError(Messages.ERROR_EMBEDDING_NOT_CONFIGURED)
    stats.embedding_model = settings.model
    try:
        result = embed_missing_chunks(
            project,
            settings,
            batch_size=settings.batch_size,
            force=reembed,
            embedder=embedder,
        )
    except ProviderError as exc:
        if not embed_best_effort:
            raise
        logger.warning("Embedding pass failed: %s", exc)
        stats.warnings.append(Messages.WARNING_EMBEDDING_SKIPPED.format(reason=str(exc)))
        return stats
    stats.embedded = result.embedded
    return stats


def _apply_prepared(conn: sqlite3.Connection, prepared: _PreparedFile, stats: IndexStats) -> None:
    entry = prepared.entry
    if prepared.error is not None:
        logger.warning("Cannot read %s: %s", entry.rel_path, prepared.error)
        stats.errors += 1
        return
    if prepared.blank:
        if entry.existing is not None:
            record = _record_for(prepared)
            record.content_hash = entry.existing.content_hash
            update_file_metadata(conn, record)
        logger.debug("Skipping blank file %s", entry.rel_path)
        stats.skipped += 1
        return
    record = _record_for(prepared)
    if prepared.unchanged:
        logger.debug("Content unchanged for %s; refreshing metadata", entry.rel_path)
        update_file_metadata(conn, record)
        stats.skipped += 1
        return
    replace_file_chunks(conn, record, prepared.chunks)
    if entry.existing is None:
        logger.debug("Added %s (%d chunks)", entry.rel_path, len(prepared.chunks))
        stats.added += 1
    else:
        logger.debug("Updated %s (%d chunks)", entry.rel_path, len(prepared.chunks))
        stats.updated += 1

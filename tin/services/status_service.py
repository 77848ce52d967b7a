"""Status reporting for the `tin status` command."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..config import EmbeddingSettings, mask_api_key
from ..project import ProjectPaths
from ..store import load_store_counts, open_store


@dataclass(slots=True)
class StatusInfo:
    root: Path
    tin_dir: Path
    db_path: Path
    indexed_files: int
    indexed_chunks: int
    embedded_chunks: int
    needs_embedding: int
    last_indexed_at: str | None
    provider: str
    provider_source: str
    base_url: str | None
    base_url_source: str
    model: str
    model_source: str
    api_key: str
    api_key_source: str
    configured: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "root": str(self.root),
            "tin_dir": str(self.tin_dir),
            "db_path": str(self.db_path),
            "indexed_files": self.indexed_files,
            "indexed_chunks": self.indexed_chunks,
            "embedded_chunks": self.embedded_chunks,
            "needs_embedding": self.needs_embedding,
            "last_indexed_at": self.last_indexed_at,
            "embedding": {
                "configured": self.configured,
                "provider": self.provider,
                "provider_source": self.provider_source,
                "base_url": self.base_url,
                "base_url_source": self.base_url_source,
                "model": self.model,
                "model_source": self.model_source,
                "api_key": self.api_key,
                "api_key_source": self.api_key_source,
            },
        }


def get_project_status(project: ProjectPaths, settings: EmbeddingSettings) -> StatusInfo:
    """Collect index counts and embedding diagnostics for *project*.

    Embedding coverage is counted for the configured model when a provider
    is set up, otherwise across every stored model.
    """
    model = settings.model if settings.configured else None
    with open_store(project.db_path) as conn:
        counts = load_store_counts(conn, model)
    return StatusInfo(
        root=project.root,
        tin_dir=project.tin_dir,
        db_path=project.db_path,
        indexed_files=counts.indexed_files,
        indexed_chunks=counts.indexed_chunks,
        embedded_chunks=counts.embedded_chunks,
        needs_embedding=counts.needs_embedding,
        last_indexed_at=counts.last_indexed_at,
        provider=settings.provider,
        provider_source=settings.provider_source,
        base_url=settings.base_url,
        base_url_source=settings.base_url_source,
        model=settings.model,
        model_source=settings.model_source,
        api_key=mask_api_key(settings.api_key),
        api_key_source=settings.api_key_source,
        configured=settings.configured,
    )

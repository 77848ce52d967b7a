"""Fill missing chunk vectors in batches and embed queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..config import DEFAULT_BATCH_SIZE, EmbeddingSettings
from ..errors import ConfigError, ProviderError
from ..project import ProjectPaths
from ..search import TinEmbedder
from ..store import (
    delete_embeddings_for_model,
    list_chunks_missing_embeddings,
    open_store,
    upsert_embeddings,
)
from ..text import Messages

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingRunResult:
    embedded: int
    model: str


@dataclass(slots=True)
class QueryVector:
    vector: np.ndarray
    model: str


def create_embedder(settings: EmbeddingSettings) -> TinEmbedder:
    """Build the provider-backed embedder; fails when no API key resolved."""
    if not settings.configured:
        raise ConfigError(Messages.ERROR_EMBEDDING_NOT_CONFIGURED)
    return TinEmbedder(settings)


def embed_missing_chunks(
    project: ProjectPaths,
    settings: EmbeddingSettings,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    force: bool = False,
    embedder: TinEmbedder | None = None,
) -> EmbeddingRunResult:
    """Embed every chunk lacking a vector for the configured model.

    Batches are fetched in ascending chunk id order and committed one at a
    time, so a run that fails midway resumes from the first unembedded
    chunk. ``force`` purges the model's vectors before starting.
    """

    if embedder is None:
        embedder = create_embedder(settings)
    model = settings.model
    size = max(1, int(batch_size))
    embedded = 0
    with open_store(project.db_path) as conn:
        if force:
            purged = delete_embeddings_for_model(conn, model)
            logger.info("Purged %d embeddings for %s", purged, model)
        while True:
            pending = list_chunks_missing_embeddings(conn, model, size)
            if not pending:
                break
            vectors = embedder.embed_texts([chunk.content for chunk in pending])
            if vectors.ndim != 2 or vectors.shape[0] != len(pending) or vectors.shape[1] == 0:
                raise ProviderError(Messages.ERROR_EMBEDDING_INCOMPLETE)
            embedded += upsert_embeddings(
                conn,
                model,
                [(chunk.chunk_id, vector) for chunk, vector in zip(pending, vectors)],
            )
            logger.debug("Embedded batch of %d chunks (%d total)", len(pending), embedded)
    logger.info("Embedded %d chunks with %s", embedded, model)
    return EmbeddingRunResult(embedded=embedded, model=model)


def embed_query(
    text: str,
    settings: EmbeddingSettings,
    *,
    embedder: TinEmbedder | None = None,
) -> QueryVector:
    clean = text.strip()
    if not clean:
        raise ProviderError(Messages.ERROR_EMPTY_QUERY)
    if embedder is None:
        embedder = create_embedder(settings)
    vectors = embedder.embed_texts([clean])
    if vectors.size == 0:
        raise ProviderError(Messages.ERROR_EMPTY_QUERY_VECTOR)
    return QueryVector(vector=np.asarray(vectors[0], dtype=np.float32), model=settings.model)

"""Keyword, vector and hybrid retrieval over the project index."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Protocol, Sequence

from ..config import EmbeddingSettings, FusionConfig, RerankSettings
from ..project import ProjectPaths
from ..providers.rerank import RemoteReranker
from ..search import SOURCE_HYBRID, SearchResult, TinEmbedder, sort_key
from ..store import open_store, search_keyword, search_vector
from ..text import Messages
from .embedding_service import embed_query

logger = logging.getLogger(__name__)

RERANK_SCORE_SPAN_FLOOR = 1e-9


class Reranker(Protocol):
    def rerank(
        self,
        query: str,
        documents: Sequence[str],
        top_n: int | None = None,
    ) -> list[tuple[int, float | None]]:
        raise NotImplementedError  # pragma: no cover


@dataclass(slots=True)
class QueryResponse:
    results: list[SearchResult]
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _FusedEntry:
    result: SearchResult
    vector_raw: float = 0.0
    keyword_raw: float = 0.0
    vector_norm: float = 0.0
    keyword_norm: float = 0.0


def keyword_search(
    project: ProjectPaths,
    query: str,
    *,
    limit: int,
    min_score: float = 0.0,
) -> list[SearchResult]:
    with open_store(project.db_path) as conn:
        return search_keyword(conn, query, limit=limit, min_score=min_score)


def vector_search(
    project: ProjectPaths,
    query: str,
    settings: EmbeddingSettings,
    *,
    limit: int,
    min_score: float = 0.0,
    full_chunk: bool = False,
    embedder: TinEmbedder | None = None,
) -> list[SearchResult]:
    """Embed *query* and rank stored chunks of the same model by cosine."""
    query_vector = embed_query(query, settings, embedder=embedder)
    with open_store(project.db_path) as conn:
        return search_vector(
            conn,
            query_vector.vector,
            query_vector.model,
            limit=limit,
            min_score=min_score,
            full_chunk=full_chunk,
        )


def _normalize_by_max(scores: Sequence[float]) -> list[float]:
    if not scores:
        return []
    max_score = max(scores)
    if max_score <= 0:
        return [0.0 for _ in scores]
    return [score / max_score for score in scores]


def fuse_results(
    keyword_results: Sequence[SearchResult],
    vector_results: Sequence[SearchResult],
    *,
    vector_weight: float,
    text_weight: float,
) -> list[SearchResult]:
    """Merge two ranked lists by chunk identity with a weighted linear blend.

    Each list is normalized by its own maximum score. A chunk found by only
    one list contributes zero for the other signal.
    """

    entries: dict[tuple[str, int, int], _FusedEntry] = {}
    keyword_norms = _normalize_by_max([item.score for item in keyword_results])
    vector_norms = _normalize_by_max([item.score for item in vector_results])

    for item, norm in zip(keyword_results, keyword_norms):
        entry = entries.get(item.identity)
        if entry is None:
            entry = entries[item.identity] = _FusedEntry(result=item)
        entry.keyword_raw = max(entry.keyword_raw, item.score)
        entry.keyword_norm = max(entry.keyword_norm, norm)

    for item, norm in zip(vector_results, vector_norms):
        entry = entries.get(item.identity)
        if entry is None:
            entry = entries[item.identity] = _FusedEntry(result=item)
        entry.vector_raw = max(entry.vector_raw, item.score)
        entry.vector_norm = max(entry.vector_norm, norm)

    fused: list[SearchResult] = []
    for entry in entries.values():
        score = vector_weight * entry.vector_norm + text_weight * entry.keyword_norm
        fused.append(
            replace(
                entry.result,
                score=score,
                source=SOURCE_HYBRID,
                vector_score=entry.vector_raw,
                keyword_score=entry.keyword_raw,
                rerank_score=None,
            )
        )
    fused.sort(key=sort_key)
    return fused


def blend_rerank_scores(
    candidates: Sequence[SearchResult],
    items: Sequence[tuple[int, float | None]],
    *,
    rerank_weight: float,
) -> list[SearchResult]:
    """Blend min-max normalized rerank scores into the fused scores."""

    raw_by_index: dict[int, float] = {}
    for idx, score in items:
        if score is None or not 0 <= idx < len(candidates):
            continue
        raw_by_index[idx] = max(score, raw_by_index.get(idx, score))
    if raw_by_index:
        low = min(raw_by_index.values())
        span = max(max(raw_by_index.values()) - low, RERANK_SCORE_SPAN_FLOOR)
    else:
        low, span = 0.0, 1.0
    blended: list[SearchResult] = []
    for idx, candidate in enumerate(candidates):
        raw = raw_by_index.get(idx)
        norm = (raw - low) / span if raw is not None else 0.0
        blended.append(
            replace(
                candidate,
                score=(1.0 - rerank_weight) * candidate.score + rerank_weight * norm,
                rerank_score=raw,
            )
        )
    blended.sort(key=sort_key)
    return blended


def _try_vector_search(
    project: ProjectPaths,
    query: str,
    settings: EmbeddingSettings,
    *,
    limit: int,
    embedder: TinEmbedder | None,
) -> tuple[list[SearchResult] | None, str | None]:
    if not settings.configured and embedder is None:
        return None, Messages.WARNING_EMBEDDING_NOT_CONFIGURED
    try:
        results = vector_search(
            project, query, settings, limit=limit, min_score=0.0, embedder=embedder
        )
    except Exception as exc:
        logger.warning("Vector search failed: %s", exc)
        return None, Messages.WARNING_VECTOR_FAILED.format(reason=str(exc))
    return results, None


def _try_rerank(
    reranker: Reranker,
    query: str,
    candidates: Sequence[SearchResult],
) -> tuple[list[tuple[int, float | None]] | None, str | None]:
    documents = [f"{item.path}\n{item.snippet}" for item in candidates]
    try:
        items = reranker.rerank(query, documents, len(documents))
    except Exception as exc:
        logger.warning("Rerank failed: %s", exc)
        return None, Messages.WARNING_RERANK_FAILED.format(reason=str(exc))
    return items, None


def hybrid_query(
    project: ProjectPaths,
    query: str,
    *,
    settings: EmbeddingSettings,
    rerank_settings: RerankSettings | None = None,
    fusion: FusionConfig | None = None,
    limit: int,
    min_score: float = 0.0,
    use_rerank: bool = True,
    embedder: TinEmbedder | None = None,
    reranker: Reranker | None = None,
) -> QueryResponse:
    """Fuse keyword and vector candidates, then optionally rerank them.

    Vector search and rerank failures never abort the query. Each one
    degrades to the previous stable result set and adds a warning.
    """

    fusion = fusion or FusionConfig()
    warnings: list[str] = []
    window = max(limit * fusion.candidate_multiplier, limit)

    keyword_results = keyword_search(project, query, limit=window, min_score=0.0)
    vector_results, warning = _try_vector_search(
        project, query, settings, limit=window, embedder=embedder
    )
    if warning:
        warnings.append(warning)
    if not vector_results:
        kept = [item for item in keyword_results if item.score >= min_score]
        return QueryResponse(results=kept[:limit], warnings=warnings)

    vector_weight, text_weight = fusion.normalized_weights()
    fused = [
        item
        for item in fuse_results(
            keyword_results,
            vector_results,
            vector_weight=vector_weight,
            text_weight=text_weight,
        )
        if item.score >= min_score
    ]
    if not use_rerank:
        return QueryResponse(results=fused[:limit], warnings=warnings)

    if reranker is None:
        if rerank_settings is None or not rerank_settings.configured:
            warnings.append(Messages.WARNING_RERANK_NOT_CONFIGURED)
            return QueryResponse(results=fused[:limit], warnings=warnings)
        reranker = RemoteReranker(rerank_settings)

    candidates = fused[: max(limit * fusion.rerank_multiplier, limit)]
    if not candidates:
        return QueryResponse(results=[], warnings=warnings)
    items, warning = _try_rerank(reranker, query, candidates)
    if warning:
        warnings.append(warning)
        return QueryResponse(results=fused[:limit], warnings=warnings)
    if not items:
        return QueryResponse(results=fused[:limit], warnings=warnings)
    blended = blend_rerank_scores(candidates, items, rerank_weight=fusion.rerank_weight)
    return QueryResponse(results=blended[:limit], warnings=warnings)

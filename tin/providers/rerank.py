"""Remote rerank client speaking the common ``/rerank`` JSON contract."""

from __future__ import annotations

import http.client
import json
import logging
from typing import Sequence
from urllib import error as urlerror
from urllib import request as urlrequest

from ..config import RerankSettings
from ..errors import ConfigError, ProviderError
from ..text import Messages

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class RemoteReranker:
    """POST ``{model, query, documents, top_n}`` and read indexed scores back."""

    def __init__(self, settings: RerankSettings, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        if not settings.configured:
            raise ConfigError(Messages.WARNING_RERANK_NOT_CONFIGURED)
        self.settings = settings
        self.timeout = timeout

    def rerank(
        self,
        query: str,
        documents: Sequence[str],
        top_n: int | None = None,
    ) -> list[tuple[int, float | None]]:
        if not documents:
            return []
        payload = _remote_rerank_request(
            settings=self.settings,
            query=query,
            documents=documents,
            top_n=top_n if top_n is not None else len(documents),
            timeout=self.timeout,
        )
        items = _extract_remote_rerank_items(payload)
        logger.debug("Rerank returned %d scored documents", len(items))
        return [(idx, score) for idx, score in items if 0 <= idx < len(documents)]


def _remote_rerank_request(
    *,
    settings: RerankSettings,
    query: str,
    documents: Sequence[str],
    top_n: int,
    timeout: float,
) -> object:
    payload = {
        "model": settings.model,
        "query": query,
        "documents": list(documents),
        "top_n": top_n,
    }
    data = json.dumps(payload).encode("utf-8")
    try:
        request = urlrequest.Request(settings.base_url, data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        request.add_header("Authorization", f"Bearer {settings.api_key}")
        with urlrequest.urlopen(request, timeout=timeout) as response:
            body = response.read().decode("utf-8", errors="replace")
    except urlerror.HTTPError as exc:
        reason = f"HTTP {exc.code}"
        try:
            detail = exc.read().decode("utf-8", errors="replace").strip()
        except OSError:
            detail = ""
        if detail:
            reason = f"{reason}: {detail[:200]}"
        raise ProviderError(Messages.ERROR_RERANK_REQUEST.format(reason=reason)) from exc
    except urlerror.URLError as exc:
        raise ProviderError(
            Messages.ERROR_RERANK_REQUEST.format(reason=str(exc.reason))
        ) from exc
    except (OSError, ValueError, http.client.HTTPException) as exc:
        raise ProviderError(Messages.ERROR_RERANK_REQUEST.format(reason=str(exc))) from exc
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise ProviderError(
            Messages.ERROR_RERANK_REQUEST.format(reason="Invalid JSON response")
        ) from exc


def _extract_remote_rerank_items(payload: object) -> list[tuple[int, float | None]]:
    items = None
    if isinstance(payload, dict):
        items = payload.get("results")
        if not isinstance(items, list):
            items = payload.get("data")
    if not isinstance(items, list):
        raise ProviderError(Messages.ERROR_RERANK_MISSING_RESULTS)
    parsed: list[tuple[int, float | None]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        index = item.get("index")
        if index is None:
            continue
        try:
            idx = int(index)
        except (TypeError, ValueError):
            continue
        score = item.get("relevance_score")
        if score is None:
            score = item.get("score")
        try:
            parsed_score = float(score) if score is not None else None
        except (TypeError, ValueError):
            parsed_score = None
        parsed.append((idx, parsed_score))
    return parsed

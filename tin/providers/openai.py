"""OpenAI(-compatible) embedding backend for tin."""

from __future__ import annotations

import logging
from typing import Iterator, Sequence

import numpy as np
from dotenv import load_dotenv
from openai import OpenAI

from ..errors import ConfigError, ProviderError
from ..text import Messages
from . import retry

logger = logging.getLogger(__name__)


class OpenAIEmbeddingBackend:
    """Embedding backend that calls an OpenAI-style ``/embeddings`` endpoint."""

    def __init__(
        self,
        *,
        model_name: str,
        api_key: str | None,
        chunk_size: int | None = None,
        base_url: str | None = None,
    ) -> None:
        load_dotenv()
        self.model_name = model_name
        self.chunk_size = chunk_size if chunk_size and chunk_size > 0 else None
        self.api_key = api_key
        if not self.api_key:
            raise ConfigError(Messages.ERROR_EMBEDDING_NOT_CONFIGURED)
        client_kwargs: dict[str, object] = {"api_key": self.api_key, "max_retries": 0}
        if base_url:
            client_kwargs["base_url"] = base_url.rstrip("/")
        self._client = OpenAI(**client_kwargs)

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, 0), dtype=np.float32)
        vectors: list[np.ndarray] = []
        for batch in _chunk(texts, self.chunk_size):
            vectors.extend(self._embed_batch(batch))
        if not vectors:
            raise ProviderError(Messages.ERROR_NO_EMBEDDINGS)
        return np.vstack(vectors)

    def _embed_batch(self, batch: Sequence[str]) -> list[np.ndarray]:
        attempt = 0
        while True:
            try:
                response = self._client.embeddings.create(
                    model=self.model_name,
                    input=list(batch),
                )
                break
            except Exception as exc:  # pragma: no cover - API client variations
                if retry.is_transient(exc) and attempt < retry.MAX_RETRIES:
                    delay = retry.backoff_delay(attempt)
                    logger.debug("Retrying embedding request in %.1fs: %s", delay, exc)
                    retry.sleep(delay)
                    attempt += 1
                    continue
                message = getattr(exc, "message", None) or str(exc)
                raise ProviderError(
                    Messages.ERROR_EMBEDDING_REQUEST.format(reason=message)
                ) from exc
        data = getattr(response, "data", None) or []
        if not data:
            raise ProviderError(Messages.ERROR_NO_EMBEDDINGS)
        return _order_vectors(data, len(batch))


def _order_vectors(data: Sequence[object], expected: int) -> list[np.ndarray]:
    """Place each item by its ``index`` field, falling back to response order."""
    slots: list[np.ndarray | None] = [None] * expected
    for position, item in enumerate(data):
        embedding = getattr(item, "embedding", None)
        if embedding is None:
            continue
        index = getattr(item, "index", None)
        target = index if isinstance(index, int) else position
        if 0 <= target < expected:
            slots[target] = np.asarray(embedding, dtype=np.float32)
    if any(vector is None or vector.size == 0 for vector in slots):
        raise ProviderError(Messages.ERROR_EMBEDDING_INCOMPLETE)
    return [vector for vector in slots if vector is not None]


def _chunk(items: Sequence[str], size: int | None) -> Iterator[Sequence[str]]:
    if size is None or size <= 0:
        yield items
        return
    for idx in range(0, len(items), size):
        yield items[idx : idx + size]

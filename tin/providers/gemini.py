"""Gemini-backed embedding backend for tin."""

from __future__ import annotations

import logging
from typing import Iterator, Sequence

import numpy as np
from dotenv import load_dotenv
from google import genai
from google.genai import types as genai_types

from ..config import DEFAULT_GEMINI_MODEL
from ..errors import ConfigError, ProviderError
from ..text import Messages
from . import retry

logger = logging.getLogger(__name__)


class GeminiEmbeddingBackend:
    """Embedding backend that calls the Gemini API via google-genai."""

    def __init__(
        self,
        *,
        model_name: str = DEFAULT_GEMINI_MODEL,
        api_key: str | None = None,
        chunk_size: int | None = None,
        base_url: str | None = None,
    ) -> None:
        load_dotenv()
        self.model_name = model_name
        self.chunk_size = chunk_size if chunk_size and chunk_size > 0 else None
        self.api_key = api_key
        if not self.api_key:
            raise ConfigError(Messages.ERROR_EMBEDDING_NOT_CONFIGURED)
        client_kwargs: dict[str, object] = {"api_key": self.api_key}
        if base_url:
            client_kwargs["http_options"] = genai_types.HttpOptions(base_url=base_url)
        self._client = genai.Client(**client_kwargs)

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
                response = self._client.models.embed_content(
                    model=self.model_name,
                    contents=list(batch),
                )
                break
            except Exception as exc:  # APIError and httpx transport errors
                if retry.is_transient(exc) and attempt < retry.MAX_RETRIES:
                    delay = retry.backoff_delay(attempt)
                    logger.debug("Retrying Gemini embedding in %.1fs: %s", delay, exc)
                    retry.sleep(delay)
                    attempt += 1
                    continue
                message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
                raise ProviderError(
                    Messages.ERROR_EMBEDDING_REQUEST.format(reason=message)
                ) from exc
        embeddings = getattr(response, "embeddings", None)
        if not embeddings:
            raise ProviderError(Messages.ERROR_NO_EMBEDDINGS)
        if len(embeddings) != len(batch):
            raise ProviderError(Messages.ERROR_EMBEDDING_INCOMPLETE)
        vectors: list[np.ndarray] = []
        for embedding in embeddings:
            values = getattr(embedding, "values", None)
            if not values:
                raise ProviderError(Messages.ERROR_EMBEDDING_INCOMPLETE)
            vectors.append(np.asarray(values, dtype=np.float32))
        return vectors


def _chunk(items: Sequence[str], size: int | None) -> Iterator[Sequence[str]]:
    if size is None or size <= 0:
        yield items
        return
    for idx in range(0, len(items), size):
        yield items[idx : idx + size]

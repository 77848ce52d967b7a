"""Search result types and the embedding backend factory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

from .config import SUPPORTED_PROVIDERS, EmbeddingSettings
from .errors import ConfigError, ProviderError
from .providers.gemini import GeminiEmbeddingBackend
from .providers.openai import OpenAIEmbeddingBackend
from .text import Messages

SOURCE_KEYWORD = "keyword"
SOURCE_VECTOR = "vector"
SOURCE_HYBRID = "hybrid"


@dataclass(slots=True)
class SearchResult:
    """Container describing a single ranked chunk hit."""

    path: str
    line: int
    start_line: int
    end_line: int
    score: float
    snippet: str
    source: str
    chunk_index: int = 0
    vector_score: float | None = None
    keyword_score: float | None = None
    rerank_score: float | None = None

    @property
    def identity(self) -> tuple[str, int, int]:
        return (self.path, self.start_line, self.end_line)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "path": self.path,
            "line": self.line,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "chunk_index": self.chunk_index,
            "score": round(self.score, 6),
            "source": self.source,
            "snippet": self.snippet,
        }
        for key in ("vector_score", "keyword_score", "rerank_score"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = round(value, 6)
        return payload


def sort_key(result: SearchResult) -> tuple[float, str, int, int]:
    """Order by score descending, then path, start line and end line."""
    return (-result.score, result.path, result.start_line, result.end_line)


class EmbeddingBackend(Protocol):
    """Minimal protocol for components that can embed text batches."""

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return embeddings for *texts* as a 2D numpy array."""
        raise NotImplementedError  # pragma: no cover


class TinEmbedder:
    """Wraps a provider backend and enforces one vector per input text."""

    def __init__(
        self,
        settings: EmbeddingSettings,
        *,
        backend: EmbeddingBackend | None = None,
    ) -> None:
        self.settings = settings
        self.model_name = settings.model
        self.provider = settings.provider
        if backend is not None:
            self._backend = backend
            self._device = getattr(backend, "device", "Custom embedding backend")
        else:
            self._backend = self._create_backend()

    @property
    def device(self) -> str:
        """Return a description of the remote backend in use."""
        return self._device

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Embed *texts*, returning a float32 matrix aligned with the input."""
        if not texts:
            return np.empty((0, 0), dtype=np.float32)
        unique_texts, inverse = self._dedupe_texts(texts)
        embeddings = np.asarray(self._backend.embed(unique_texts), dtype=np.float32)
        if embeddings.ndim != 2 or embeddings.shape[0] != len(unique_texts):
            raise ProviderError(Messages.ERROR_EMBEDDING_INCOMPLETE)
        if embeddings.shape[1] == 0:
            raise ProviderError(Messages.ERROR_EMBEDDING_INCOMPLETE)
        if len(unique_texts) != len(texts):
            embeddings = embeddings[inverse]
        return embeddings

    def _create_backend(self) -> EmbeddingBackend:
        settings = self.settings
        if not settings.configured:
            raise ConfigError(Messages.ERROR_EMBEDDING_NOT_CONFIGURED)
        if self.provider == "gemini":
            self._device = f"{self.model_name} via Gemini API"
            return GeminiEmbeddingBackend(
                model_name=self.model_name,
                api_key=settings.api_key,
                chunk_size=settings.batch_size,
                base_url=settings.base_url,
            )
        if self.provider == "openai":
            self._device = f"{self.model_name} via OpenAI API"
            return OpenAIEmbeddingBackend(
                model_name=self.model_name,
                api_key=settings.api_key,
                chunk_size=settings.batch_size,
                base_url=settings.base_url,
            )
        allowed = ", ".join(SUPPORTED_PROVIDERS)
        raise ConfigError(
            Messages.ERROR_PROVIDER_INVALID.format(value=self.provider, allowed=allowed)
        )

    @staticmethod
    def _dedupe_texts(texts: Sequence[str]) -> tuple[list[str], list[int]]:
        unique_texts: list[str] = []
        index_map: dict[str, int] = {}
        inverse: list[int] = []
        for text in texts:
            position = index_map.get(text)
            if position is None:
                position = len(unique_texts)
                unique_texts.append(text)
                index_map[text] = position
            inverse.append(position)
        return unique_texts, inverse

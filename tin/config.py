"""Project configuration and provider settings resolution for tin."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlparse, urlunparse

from .errors import ConfigError
from .text import Messages

DEFAULT_INCLUDE_GLOBS: tuple[str, ...] = ("**/*.md", "**/*.txt")
DEFAULT_EXCLUDE_GLOBS: tuple[str, ...] = (
    ".tin/**",
    ".git/**",
    "node_modules/**",
    "dist/**",
    "build/**",
)
DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_GEMINI_MODEL = "gemini-embedding-001"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_BATCH_SIZE = 32
DEFAULT_RERANK_BASE_URL = "https://api.openai.com/v1"
DEFAULT_RERANK_MODEL = "rerank-v1"
DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_TEXT_WEIGHT = 0.3
DEFAULT_CANDIDATE_MULTIPLIER = 4
DEFAULT_RERANK_MULTIPLIER = 3
DEFAULT_RERANK_WEIGHT = 0.4
SUPPORTED_PROVIDERS: tuple[str, ...] = (DEFAULT_PROVIDER, "gemini")

ENV_PROVIDER = "TIN_EMBEDDING_PROVIDER"
ENV_API_KEY = "TIN_EMBEDDING_API_KEY"
ENV_BASE_URL = "TIN_EMBEDDING_BASE_URL"
ENV_MODEL = "TIN_EMBEDDING_MODEL"
ENV_RERANK_API_KEY = "TIN_RERANK_API_KEY"
ENV_RERANK_BASE_URL = "TIN_RERANK_BASE_URL"
ENV_RERANK_MODEL = "TIN_RERANK_MODEL"
PROVIDER_API_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_GENAI_API_KEY"),
}
PROVIDER_BASE_URL_ALIASES: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_BASE_URL",),
    "gemini": (),
}
SOURCE_DEFAULT = "default"
SOURCE_UNSET = "unset"


@dataclass
class EmbeddingOverrides:
    provider: str | None = None
    base_url: str | None = None
    model: str | None = None
    api_key: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE


@dataclass
class RemoteRerankConfig:
    base_url: str | None = None
    api_key: str | None = None
    model: str | None = None


@dataclass
class FusionConfig:
    vector_weight: float = DEFAULT_VECTOR_WEIGHT
    text_weight: float = DEFAULT_TEXT_WEIGHT
    candidate_multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER
    rerank_multiplier: int = DEFAULT_RERANK_MULTIPLIER
    rerank_weight: float = DEFAULT_RERANK_WEIGHT

    def normalized_weights(self) -> tuple[float, float]:
        """Return (vector, text) weights rescaled to sum to 1."""
        total = self.vector_weight + self.text_weight
        if total <= 0:
            raise ConfigError(Messages.ERROR_FUSION_WEIGHTS)
        return self.vector_weight / total, self.text_weight / total


@dataclass
class Config:
    include: list[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_GLOBS))
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_GLOBS))
    embedding: EmbeddingOverrides = field(default_factory=EmbeddingOverrides)
    rerank: RemoteRerankConfig = field(default_factory=RemoteRerankConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)


@dataclass(frozen=True)
class EmbeddingSettings:
    """Embedding provider settings with the source that supplied each value."""

    provider: str
    provider_source: str
    api_key: str | None
    api_key_source: str
    base_url: str | None
    base_url_source: str
    model: str
    model_source: str
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class RerankSettings:
    api_key: str | None
    api_key_source: str
    base_url: str
    base_url_source: str
    model: str
    model_source: str

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


def default_config_payload() -> Dict[str, Any]:
    return {
        "include": list(DEFAULT_INCLUDE_GLOBS),
        "exclude": list(DEFAULT_EXCLUDE_GLOBS),
    }


def write_default_config(config_path: Path) -> bool:
    """Write the default config file unless one already exists."""
    if config_path.exists():
        return False
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        json.dumps(default_config_payload(), ensure_ascii=False, indent=2) + "\n",
        encoding="utf-8",
    )
    return True


def load_config(config_path: Path) -> Config:
    """Load and validate *config_path*; a missing file yields defaults."""
    if not config_path.exists():
        return Config()
    raw_text = config_path.read_text(encoding="utf-8")
    try:
        raw = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            Messages.ERROR_CONFIG_JSON_INVALID.format(path=config_path, reason=exc.msg)
        ) from exc
    if not isinstance(raw, Mapping):
        raise ConfigError(Messages.ERROR_CONFIG_NOT_OBJECT.format(path=config_path))
    return config_from_mapping(raw)


def config_from_mapping(payload: Mapping[str, object]) -> Config:
    config = Config()
    if "include" in payload:
        config.include = _coerce_str_list(payload["include"], "include")
    if "exclude" in payload:
        config.exclude = _coerce_str_list(payload["exclude"], "exclude")
    if "embedding" in payload:
        config.embedding = _coerce_embedding(payload["embedding"])
    if "rerank" in payload:
        config.rerank = _coerce_rerank(payload["rerank"])
    if "fusion" in payload:
        config.fusion = _coerce_fusion(payload["fusion"])
        config.fusion.normalized_weights()
    return config


def normalize_remote_rerank_url(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if not parsed.scheme or not parsed.netloc:
        base = cleaned.rstrip("/")
        if base.endswith("/rerank") or base.endswith("/reranker"):
            return base
        return f"{base}/rerank"
    path = parsed.path or ""
    trimmed = path.rstrip("/")
    if trimmed.endswith("/rerank") or trimmed.endswith("/reranker"):
        new_path = trimmed
    else:
        new_path = f"{trimmed}/rerank" if trimmed else "/rerank"
    normalized = parsed._replace(path=new_path)
    return urlunparse(normalized)


def resolve_default_model(provider: str) -> str:
    """Return the default embedding model for *provider*."""
    if provider == "gemini":
        return DEFAULT_GEMINI_MODEL
    return DEFAULT_MODEL


def resolve_embedding_settings(
    config: Config | None = None,
    env: Mapping[str, str] | None = None,
) -> EmbeddingSettings:
    """Resolve embedding settings: explicit config, then env vars, then defaults."""

    environ = os.environ if env is None else env
    overrides = config.embedding if config is not None else EmbeddingOverrides()

    provider, provider_source = _first_value(
        (overrides.provider, "config: embedding.provider"),
        *_env_candidates(environ, (ENV_PROVIDER,)),
    )
    if provider is None:
        provider, provider_source = DEFAULT_PROVIDER, SOURCE_DEFAULT
    provider = provider.lower()
    if provider not in SUPPORTED_PROVIDERS:
        allowed = ", ".join(SUPPORTED_PROVIDERS)
        raise ConfigError(
            Messages.ERROR_PROVIDER_INVALID.format(value=provider, allowed=allowed)
        )

    api_key, api_key_source = _first_value(
        (overrides.api_key, "config: embedding.api_key"),
        *_env_candidates(environ, (ENV_API_KEY,) + PROVIDER_API_KEY_ALIASES[provider]),
    )
    if api_key is None:
        api_key_source = SOURCE_UNSET

    base_url, base_url_source = _first_value(
        (overrides.base_url, "config: embedding.base_url"),
        *_env_candidates(environ, (ENV_BASE_URL,) + PROVIDER_BASE_URL_ALIASES[provider]),
    )
    if base_url is None:
        if provider == "openai":
            base_url, base_url_source = DEFAULT_OPENAI_BASE_URL, SOURCE_DEFAULT
        else:
            base_url_source = SOURCE_DEFAULT
    if base_url is not None:
        base_url = base_url.rstrip("/")

    model, model_source = _first_value(
        (overrides.model, "config: embedding.model"),
        *_env_candidates(environ, (ENV_MODEL,)),
    )
    if model is None:
        model, model_source = resolve_default_model(provider), SOURCE_DEFAULT

    return EmbeddingSettings(
        provider=provider,
        provider_source=provider_source,
        api_key=api_key,
        api_key_source=api_key_source,
        base_url=base_url,
        base_url_source=base_url_source,
        model=model,
        model_source=model_source,
        batch_size=overrides.batch_size,
    )


def resolve_rerank_settings(
    config: Config | None = None,
    env: Mapping[str, str] | None = None,
) -> RerankSettings:
    """Resolve remote rerank settings: explicit config, then env vars, then defaults."""

    environ = os.environ if env is None else env
    overrides = config.rerank if config is not None else RemoteRerankConfig()

    api_key, api_key_source = _first_value(
        (overrides.api_key, "config: rerank.api_key"),
        *_env_candidates(environ, (ENV_RERANK_API_KEY,)),
    )
    if api_key is None:
        api_key_source = SOURCE_UNSET
    base_url, base_url_source = _first_value(
        (overrides.base_url, "config: rerank.base_url"),
        *_env_candidates(environ, (ENV_RERANK_BASE_URL,)),
    )
    if base_url is None:
        base_url, base_url_source = DEFAULT_RERANK_BASE_URL, SOURCE_DEFAULT
    model, model_source = _first_value(
        (overrides.model, "config: rerank.model"),
        *_env_candidates(environ, (ENV_RERANK_MODEL,)),
    )
    if model is None:
        model, model_source = DEFAULT_RERANK_MODEL, SOURCE_DEFAULT
    return RerankSettings(
        api_key=api_key,
        api_key_source=api_key_source,
        base_url=normalize_remote_rerank_url(base_url) or base_url,
        base_url_source=base_url_source,
        model=model,
        model_source=model_source,
    )


def mask_api_key(value: str | None) -> str:
    if not value:
        return SOURCE_UNSET
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def _env_candidates(
    environ: Mapping[str, str], names: tuple[str, ...]
) -> list[tuple[str | None, str]]:
    return [(environ.get(name), f"env var: {name}") for name in names]


def _first_value(*candidates: tuple[str | None, str]) -> tuple[str | None, str]:
    for value, source in candidates:
        cleaned = (value or "").strip()
        if cleaned:
            return cleaned, source
    return None, SOURCE_UNSET


def _coerce_str_list(value: object, field_name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    return [item for item in value if item.strip()]


def _coerce_optional_str(value: object, field_name: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))


def _coerce_int(value: object, field_name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    if isinstance(value, int):
        result = value
    elif isinstance(value, float) and value.is_integer():
        result = int(value)
    else:
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    if result <= 0:
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    return result


def _coerce_weight(value: object, field_name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    result = float(value)
    if result < 0 or result != result:
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    return result


def _require_mapping(value: object, field_name: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise ConfigError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field_name))
    return value


def _coerce_embedding(value: object) -> EmbeddingOverrides:
    raw = _require_mapping(value, "embedding")
    return EmbeddingOverrides(
        provider=_coerce_optional_str(raw.get("provider"), "embedding.provider"),
        base_url=_coerce_optional_str(raw.get("base_url"), "embedding.base_url"),
        model=_coerce_optional_str(raw.get("model"), "embedding.model"),
        api_key=_coerce_optional_str(raw.get("api_key"), "embedding.api_key"),
        batch_size=_coerce_int(
            raw.get("batch_size"), "embedding.batch_size", DEFAULT_BATCH_SIZE
        ),
    )


def _coerce_rerank(value: object) -> RemoteRerankConfig:
    raw = _require_mapping(value, "rerank")
    return RemoteRerankConfig(
        base_url=_coerce_optional_str(raw.get("base_url"), "rerank.base_url"),
        api_key=_coerce_optional_str(raw.get("api_key"), "rerank.api_key"),
        model=_coerce_optional_str(raw.get("model"), "rerank.model"),
    )


def _coerce_fusion(value: object) -> FusionConfig:
    raw = _require_mapping(value, "fusion")
    rerank_weight = _coerce_weight(
        raw.get("rerank_weight"), "fusion.rerank_weight", DEFAULT_RERANK_WEIGHT
    )
    if rerank_weight > 1:
        raise ConfigError(
            Messages.ERROR_CONFIG_VALUE_INVALID.format(field="fusion.rerank_weight")
        )
    return FusionConfig(
        vector_weight=_coerce_weight(
            raw.get("vector_weight"), "fusion.vector_weight", DEFAULT_VECTOR_WEIGHT
        ),
        text_weight=_coerce_weight(
            raw.get("text_weight"), "fusion.text_weight", DEFAULT_TEXT_WEIGHT
        ),
        candidate_multiplier=_coerce_int(
            raw.get("candidate_multiplier"),
            "fusion.candidate_multiplier",
            DEFAULT_CANDIDATE_MULTIPLIER,
        ),
        rerank_multiplier=_coerce_int(
            raw.get("rerank_multiplier"),
            "fusion.rerank_multiplier",
            DEFAULT_RERANK_MULTIPLIER,
        ),
        rerank_weight=rerank_weight,
    )

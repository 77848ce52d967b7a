"""Error types shared by the tin core and CLI."""

from __future__ import annotations


class TinError(RuntimeError):
    """Base error carrying a human-readable message and an exit-code hint."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ConfigError(TinError):
    """Raised for missing projects, invalid config files and provider setup issues."""


class UsageError(TinError):
    """Raised when command line options conflict."""

    def __init__(self, message: str) -> None:
        super().__init__(message, exit_code=2)


class ProviderError(TinError):
    """Raised when an embedding or rerank provider call fails or misbehaves."""

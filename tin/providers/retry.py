"""Retry policy shared by the HTTP embedding providers."""

from __future__ import annotations

import time

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}
MAX_RETRIES = 2
RETRY_BASE_DELAY = 0.5
RETRY_MAX_DELAY = 4.0

_TRANSIENT_TOKENS = (
    "rate limit",
    "timeout",
    "temporar",
    "overload",
    "try again",
    "too many requests",
    "service unavailable",
)


def sleep(seconds: float) -> None:
    time.sleep(seconds)


def backoff_delay(attempt: int) -> float:
    return min(RETRY_MAX_DELAY, RETRY_BASE_DELAY * (2**attempt))


def extract_status_code(exc: Exception) -> int | None:
    for attr in ("status_code", "status", "http_status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def is_transient(exc: Exception) -> bool:
    """Return True when *exc* looks like a rate limit, timeout or 5xx."""
    status = extract_status_code(exc)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES
    name = exc.__class__.__name__.lower()
    if "ratelimit" in name or "timeout" in name or "connection" in name:
        return True
    message = str(exc).lower()
    return any(token in message for token in _TRANSIENT_TOKENS)

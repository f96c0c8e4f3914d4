"""Deterministic classification of generation service failures."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass

import httpx

_QUOTA_CODES: tuple[str, ...] = ("insufficient_quota",)
_RATE_LIMIT_CODES: tuple[str, ...] = ("rate_limit_exceeded",)

# Compatibility shim: the API does not always return a structured code, so
# messages are matched case-insensitively as a last resort.
_QUOTA_PATTERNS: tuple[str, ...] = (
    "insufficient_quota",
    "insufficient quota",
    "insufficient-quota",
    "exceeded your current quota",
    "billing hard limit",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "rate-limit",
    "ratelimit",
    "too many requests",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "request-timeout",
    "timed out",
)


class FailureKind(str, enum.Enum):
    """Retry-relevant kinds of generation failure."""

    QUOTA_EXHAUSTED = "quota_exhausted"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NON_RETRYABLE = "non_retryable"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.RATE_LIMITED, FailureKind.TIMEOUT)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    kind: FailureKind
    matched_rule: str
    matched_pattern: str | None = None


def classify_generation_error(exc: BaseException) -> FailureClassification:
    """Classify an exception raised by one generation call."""

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return FailureClassification(FailureKind.TIMEOUT, "timeout_exception")

    status_code = getattr(exc, "status_code", None)
    code = _lower(getattr(exc, "code", None))
    error_type = _lower(getattr(exc, "type", None))
    message = (getattr(exc, "message", None) or str(exc)).lower()

    # Quota first: quota responses also arrive as HTTP 429.
    if code in _QUOTA_CODES or error_type in _QUOTA_CODES:
        return FailureClassification(FailureKind.QUOTA_EXHAUSTED, "quota_code", code or error_type)
    pattern = _first_match(message, _QUOTA_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureKind.QUOTA_EXHAUSTED, "quota_message", pattern)

    if status_code == 429:
        return FailureClassification(FailureKind.RATE_LIMITED, "status_429")
    if code in _RATE_LIMIT_CODES or error_type in _RATE_LIMIT_CODES:
        return FailureClassification(FailureKind.RATE_LIMITED, "rate_limit_code", code or error_type)
    pattern = _first_match(message, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureKind.RATE_LIMITED, "rate_limit_message", pattern)

    pattern = _first_match(message, _TIMEOUT_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureKind.TIMEOUT, "timeout_message", pattern)

    return FailureClassification(FailureKind.NON_RETRYABLE, "fallback_non_retryable")


def _lower(value: object) -> str | None:
    if value is None:
        return None
    return str(value).lower()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None

"""
Retry policy helpers.

Purpose:
- Centralize retry and backoff rules for pipeline stages and jobs
- Classify failures as retryable or permanent
- Let the worker and pipeline make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum

import httpx

from constants import (
    JOB_BACKOFF_BASE_S,
    JOB_BACKOFF_MAX_S,
    JOB_BACKOFF_MULTIPLIER,
    RETRY_MULTIPLIER,
)
from errors import ResourceError


# =============================================================================
# Error Categories
# =============================================================================

class ErrorCategory(str, Enum):
    """
    Failure classification used by retry policy.

    RETRYABLE:
        Transient upstream condition (rate limit, timeout, network, 5xx,
        temporarily unavailable). Another attempt may succeed.

    PERMANENT:
        Another attempt will fail the same way (4xx other than 429,
        validation, missing audio, service not configured).

    Notes:
    - Unknown failures default to RETRYABLE; the attempt budget bounds them.
    """

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


_RETRYABLE_PATTERNS = (
    re.compile(r"\b429\b"),
    re.compile(r"rate.?limit"),
    re.compile(r"timed? ?out|timeout"),
    re.compile(r"network|econnrefused|econnreset|socket hang up|connection (reset|refused)"),
    re.compile(r"\b(500|502|503|504)\b"),
    re.compile(r"temporarily unavailable|service unavailable"),
)

_PERMANENT_PATTERNS = (
    re.compile(r"\b(400|401|403|404)\b"),
    re.compile(r"invalid|validation"),
)


def classify_status(status_code: int) -> ErrorCategory:
    if status_code == 429 or status_code >= 500:
        return ErrorCategory.RETRYABLE
    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT
    return ErrorCategory.RETRYABLE


def classify_message(message: str) -> ErrorCategory:
    lower = message.lower()
    if any(p.search(lower) for p in _RETRYABLE_PATTERNS):
        return ErrorCategory.RETRYABLE
    if any(p.search(lower) for p in _PERMANENT_PATTERNS):
        return ErrorCategory.PERMANENT
    return ErrorCategory.RETRYABLE


def classify_error(error: BaseException | str) -> ErrorCategory:
    """
    Classify an error (or a stored error message).

    Order:
    1. Resource errors are permanent.
    2. An explicit integer status_code attribute decides.
    3. Timeouts and transport failures are retryable.
    4. Message inspection.
    5. Default: retryable.
    """
    if isinstance(error, str):
        return classify_message(error)

    if isinstance(error, ResourceError):
        return ErrorCategory.PERMANENT

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and not isinstance(status_code, bool):
        return classify_status(status_code)

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException,
                          httpx.TransportError, ConnectionError)):
        return ErrorCategory.RETRYABLE

    return classify_message(str(error))


def is_retryable(error: BaseException) -> bool:
    return classify_error(error) is ErrorCategory.RETRYABLE


# =============================================================================
# Stage Policy
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for one pipeline call.

    max_attempts counts the initial attempt.
    """
    max_attempts: int
    initial_delay_ms: int
    max_delay_ms: int
    multiplier: float = RETRY_MULTIPLIER

    @staticmethod
    def of(values: tuple[int, int, int]) -> RetryPolicy:
        """Build from an (attempts, initial_ms, max_ms) constant."""
        attempts, initial_ms, max_ms = values
        return RetryPolicy(
            max_attempts=attempts,
            initial_delay_ms=initial_ms,
            max_delay_ms=max_ms,
        )


def retry_delay_ms(policy: RetryPolicy, attempt: int) -> int:
    """
    Delay after failed attempt N (1-based) before attempt N+1.

    initial * multiplier^(N-1), capped at max_delay_ms.
    """
    exponent = max(0, attempt - 1)
    delay = policy.initial_delay_ms * (policy.multiplier ** exponent)
    return int(min(delay, policy.max_delay_ms))


def should_retry(policy: RetryPolicy, attempt: int, error: BaseException) -> bool:
    """True if attempt N failed with a retryable error and attempts remain."""
    return attempt < policy.max_attempts and is_retryable(error)


# =============================================================================
# Job Backoff
# =============================================================================

def job_backoff_s(attempt: int) -> int:
    """
    Delay before a failed job is retried.

    base * multiplier^(attempt-1), capped: 10s, 30s, 90s, 270s, 300s, ...
    """
    exponent = max(0, attempt - 1)
    return min(JOB_BACKOFF_BASE_S * JOB_BACKOFF_MULTIPLIER ** exponent, JOB_BACKOFF_MAX_S)

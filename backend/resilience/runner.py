"""
Async retry runner.

Wraps a single awaitable-producing call in the bounded exponential backoff
described by a RetryPolicy. Delay math and classification live in
resilience.policy; this module only sleeps, logs and re-raises.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from observability.logger import log_event
from resilience.policy import RetryPolicy, is_retryable, retry_delay_ms

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    name: str,
    call_id: str | None = None,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await operation() until it succeeds or the policy gives up.

    - Permanent errors are re-raised immediately.
    - After the final attempt the last error is re-raised.
    - Cancellation is never retried.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            if attempt >= policy.max_attempts or not retryable(exc):
                raise

            delay_ms = retry_delay_ms(policy, attempt)
            log_event({
                "event_type": "RETRY_SCHEDULED",
                "operation": name,
                "call_id": call_id,
                "attempt": attempt,
                "max_attempts": policy.max_attempts,
                "delay_ms": delay_ms,
                "error": str(exc),
            })
            await sleep(delay_ms / 1000)
            attempt += 1

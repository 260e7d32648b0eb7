# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio

import pytest

from errors import EmptyAudioError, ServiceNotConfiguredError, UpstreamServiceError
from resilience.policy import (
    ErrorCategory,
    RetryPolicy,
    classify_error,
    job_backoff_s,
    retry_delay_ms,
    should_retry,
)
from resilience.runner import with_retry


# ---------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (UpstreamServiceError("deepgram", "busy", status_code=503), ErrorCategory.RETRYABLE),
        (UpstreamServiceError("openai", "slow down", status_code=429), ErrorCategory.RETRYABLE),
        (UpstreamServiceError("storage", "bad request", status_code=400), ErrorCategory.PERMANENT),
        (EmptyAudioError("calls/a.wav"), ErrorCategory.PERMANENT),
        (ServiceNotConfiguredError("transcription"), ErrorCategory.PERMANENT),
        (asyncio.TimeoutError(), ErrorCategory.RETRYABLE),
        (ConnectionResetError("peer went away"), ErrorCategory.RETRYABLE),
        (RuntimeError("Rate limit exceeded"), ErrorCategory.RETRYABLE),
        (RuntimeError("Invalid API key"), ErrorCategory.PERMANENT),
        (RuntimeError("something odd happened"), ErrorCategory.RETRYABLE),
    ],
)
def test_classify_error(error: BaseException, expected: ErrorCategory) -> None:
    assert classify_error(error) is expected


def test_stored_messages_are_classified_too() -> None:
    assert classify_error("storage: Failed to download audio x: 404") is ErrorCategory.PERMANENT
    assert classify_error("Job timed out (stale)") is ErrorCategory.RETRYABLE
    # Retryable patterns win when both match.
    assert classify_error("400 then request timed out") is ErrorCategory.RETRYABLE


# ---------------------------------------------------------------------
# Delays
# ---------------------------------------------------------------------

def test_retry_delay_is_exponential_and_capped() -> None:
    policy = RetryPolicy.of((4, 2_000, 10_000))

    assert [retry_delay_ms(policy, n) for n in (1, 2, 3, 4)] == [2_000, 4_000, 8_000, 10_000]


def test_should_retry_respects_budget_and_category() -> None:
    policy = RetryPolicy.of((2, 1_000, 5_000))
    transient = UpstreamServiceError("s", "x", status_code=502)

    assert should_retry(policy, 1, transient)
    assert not should_retry(policy, 2, transient)
    assert not should_retry(policy, 1, UpstreamServiceError("s", "x", status_code=401))


def test_job_backoff_schedule() -> None:
    assert [job_backoff_s(n) for n in (1, 2, 3, 4, 5, 9)] == [10, 30, 90, 270, 300, 300]


# ---------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------

class Flaky:
    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_with_retry_recovers_from_transient_error(sleep_recorder, captured_logs) -> None:
    op = Flaky(UpstreamServiceError("s", "unavailable", status_code=503), "done")

    result = await with_retry(
        op, policy=RetryPolicy.of((3, 2_000, 10_000)), name="download", sleep=sleep_recorder
    )

    assert result == "done"
    assert op.calls == 2
    assert sleep_recorder.delays == [2.0]
    assert captured_logs[0]["event_type"] == "RETRY_SCHEDULED"
    assert captured_logs[0]["attempt"] == 1


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_permanent_errors(sleep_recorder) -> None:
    op = Flaky(UpstreamServiceError("s", "forbidden", status_code=403))

    with pytest.raises(UpstreamServiceError):
        await with_retry(op, policy=RetryPolicy.of((3, 1, 1)), name="x", sleep=sleep_recorder)

    assert op.calls == 1
    assert sleep_recorder.delays == []


@pytest.mark.asyncio
async def test_with_retry_raises_last_error_when_exhausted(sleep_recorder) -> None:
    op = Flaky(TimeoutError("first"), TimeoutError("second"), TimeoutError("third"))

    with pytest.raises(TimeoutError, match="third"):
        await with_retry(
            op, policy=RetryPolicy.of((3, 2_000, 10_000)), name="x", sleep=sleep_recorder
        )

    assert op.calls == 3
    assert sleep_recorder.delays == [2.0, 4.0]

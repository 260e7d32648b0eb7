"""
Job lifecycle decisions.

Pure functions shared by the worker and every JobRepository so the in-memory
and Supabase implementations transition jobs identically.

This module contains NO timers, NO async, NO side effects.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from constants import MAX_ERROR_CHARS, STALE_REQUEUE_BACKOFF_S
from jobs.models import FailureDecision, Job, JobStatus
from resilience.policy import ErrorCategory, classify_error, job_backoff_s


def truncate_error(message: str) -> str:
    return message[:MAX_ERROR_CHARS]


def decide_failure(job: Job, error: BaseException | str, now: datetime) -> FailureDecision:
    """
    Decide the transition for a failed attempt.

    job.attempt_count already includes the failed attempt (it is bumped on
    claim). Permanent errors and exhausted budgets fail the job; anything
    else is retried after job_backoff_s(attempt_count).
    """
    category = classify_error(error)
    if category is ErrorCategory.PERMANENT or not job.attempts_remaining:
        return FailureDecision(
            status=JobStatus.FAILED,
            error_category=category,
            next_retry_at=None,
        )
    return FailureDecision(
        status=JobStatus.RETRYING,
        error_category=category,
        next_retry_at=now + timedelta(seconds=job_backoff_s(job.attempt_count)),
    )


def decide_stale(job: Job, now: datetime) -> FailureDecision:
    """Requeue a job stuck in processing (worker crash or hang)."""
    if not job.attempts_remaining:
        return FailureDecision(
            status=JobStatus.FAILED,
            error_category=ErrorCategory.RETRYABLE,
            next_retry_at=None,
        )
    return FailureDecision(
        status=JobStatus.RETRYING,
        error_category=ErrorCategory.RETRYABLE,
        next_retry_at=now + timedelta(seconds=STALE_REQUEUE_BACKOFF_S * max(1, job.attempt_count)),
    )


def is_stale(job: Job, now: datetime, older_than_s: int) -> bool:
    return (
        job.status is JobStatus.PROCESSING
        and job.started_at is not None
        and job.started_at < now - timedelta(seconds=older_than_s)
    )

"""
Durable job worker.

Responsibilities:
- Accept "process this call" requests (idempotent per call)
- Claim one job at a time and run the batch pipeline for it
- Translate the outcome into a job transition (completed / retrying / failed)
- Periodically requeue jobs orphaned in processing

Non-responsibilities:
- No pipeline logic (see pipeline.batch)
- No failure policy of its own (see jobs.policy)

The loop never dies on a single bad iteration: errors are logged as
WORKER_LOOP_ERROR and the next tick proceeds.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Mapping

from adapters.storage.base import JobRepository
from constants import (
    CRITICAL_WRITE_RETRY,
    JOB_POLL_INTERVAL_MS,
    STALE_JOB_THRESHOLD_S,
    STALE_SWEEP_INTERVAL_MS,
)
from jobs.models import Job, JobStage, JobStatus
from jobs.policy import decide_failure
from observability.logger import log_error, log_event
from observability.metrics import timed
from pipeline.batch import CallProcessor, ProcessingResult
from resilience.policy import RetryPolicy
from resilience.runner import with_retry


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobWorker:
    def __init__(
        self,
        *,
        repo: JobRepository,
        processor: CallProcessor,
        worker_id: str,
        clock: Callable[[], datetime] = _utc_now,
        poll_interval_ms: int = JOB_POLL_INTERVAL_MS,
        stale_sweep_interval_ms: int = STALE_SWEEP_INTERVAL_MS,
        stale_threshold_s: int = STALE_JOB_THRESHOLD_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._repo = repo
        self._processor = processor
        self._worker_id = worker_id
        self._clock = clock
        self._poll_interval_s = poll_interval_ms / 1000
        self._sweep_interval = timedelta(milliseconds=stale_sweep_interval_ms)
        self._stale_threshold_s = stale_threshold_s
        self._sleep = sleep
        self._last_sweep: datetime | None = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def enqueue(self, call_id: str, workspace_id: str, audio_object_path: str) -> Job:
        job, created = await self._repo.create_job(
            call_id=call_id,
            workspace_id=workspace_id,
            audio_object_path=audio_object_path,
            now=self._clock(),
        )
        log_event({
            "event_type": "JOB_ENQUEUED" if created else "JOB_ALREADY_EXISTS",
            "call_id": call_id,
            "job_id": job.id,
            "status": job.status.value,
        })
        return job

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> Job | None:
        """Claim and process at most one job. Returns the job's final row."""
        job = await self._repo.claim_next_job(now or self._clock())
        if job is None:
            return None

        log_event({
            "event_type": "JOB_CLAIMED",
            "worker_id": self._worker_id,
            "call_id": job.call_id,
            "job_id": job.id,
            "attempt": job.attempt_count,
            "max_attempts": job.max_attempts,
        })
        await self.process_job(job)
        return await self._repo.get_job(job.id)

    async def process_job(self, job: Job) -> ProcessingResult:
        async def on_stage(stage: JobStage, flags: Mapping[str, bool]) -> None:
            await self._report_progress(job, stage, flags)

        try:
            with timed("job_total", call_id=job.call_id, job_id=job.id):
                result = await self._processor.process(job, on_stage)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Defects inside the pipeline still count against the job.
            log_error("PIPELINE_CRASHED", exc, call_id=job.call_id, job_id=job.id)
            result = ProcessingResult(ok=False, call_id=job.call_id, error=str(exc), cause=exc)

        now = self._clock()
        if result.ok:
            await self._repo.complete_job(job.id, now=now)
            log_event({
                "event_type": "JOB_COMPLETED",
                "call_id": job.call_id,
                "job_id": job.id,
                "attempt": job.attempt_count,
            })
            return result

        reason = result.cause if result.cause is not None else (result.error or "unknown error")
        decision = decide_failure(job, reason, now)
        await self._repo.fail_job(
            job.id,
            decision=decision,
            error=result.error or str(reason),
            now=now,
        )
        log_event({
            "event_type": "JOB_FAILED" if decision.status is JobStatus.FAILED else "JOB_RETRY_SCHEDULED",
            "call_id": job.call_id,
            "job_id": job.id,
            "attempt": job.attempt_count,
            "error_category": decision.error_category.value,
            "next_retry_at": decision.next_retry_at.isoformat() if decision.next_retry_at else None,
            "error": result.error,
        })
        return result

    async def _report_progress(self, job: Job, stage: JobStage, flags: Mapping[str, bool]) -> None:
        """Best-effort progress write: retried, then logged. Never decides the job outcome."""
        try:
            await with_retry(
                lambda: self._repo.update_progress(job.id, now=self._clock(), stage=stage, flags=flags),
                policy=RetryPolicy.of(CRITICAL_WRITE_RETRY),
                name="update_progress",
                call_id=job.call_id,
                sleep=self._sleep,
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_error(
                "JOB_PROGRESS_WRITE_FAILED", exc, call_id=job.call_id, job_id=job.id, stage=stage.value
            )

    async def sweep_stale(self, now: datetime | None = None) -> int:
        moved = await self._repo.requeue_stale_jobs(
            now=now or self._clock(),
            older_than_s=self._stale_threshold_s,
        )
        if moved:
            log_event({"event_type": "STALE_JOBS_REQUEUED", "count": moved})
        return moved

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        now = self._clock()
        if self._last_sweep is None or now - self._last_sweep >= self._sweep_interval:
            self._last_sweep = now
            await self.sweep_stale(now)
        await self.run_once(now)

    async def run(self, stop_event: asyncio.Event) -> None:
        log_event({"event_type": "WORKER_STARTED", "worker_id": self._worker_id})
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_error("WORKER_LOOP_ERROR", exc, worker_id=self._worker_id)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval_s)
            except asyncio.TimeoutError:
                pass
        log_event({"event_type": "WORKER_STOPPED", "worker_id": self._worker_id})

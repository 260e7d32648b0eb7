"""
In-process storage used for local development (no Supabase configured) and
tests.

The job repository claims with the same compare-and-swap shape as the
Supabase implementation: a candidate is claimed only if its status and
attempt_count still match what was observed. Within one event loop there is
no await between the check and the write, so the swap is atomic.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping, Sequence

from adapters.storage.base import CallRecord, CallStore, JobRepository
from ai.recommendations.types import RecommendationSet
from ai.signals.types import AISignalSet
from ai.summary import CallSummary
from constants import STALE_JOB_ERROR
from conversation.events import Event
from conversation.transcript import TranscriptRecord
from errors import UpstreamServiceError
from jobs.models import FailureDecision, Job, JobStage, JobStatus
from jobs.policy import decide_stale, is_stale, truncate_error
from signals.types import SignalSet

_STAGE_FLAGS = frozenset({"transcript_done", "signals_done", "recommendations_done", "summary_done"})


class InMemoryJobRepository(JobRepository):
    """Job table held in a dict keyed by job id."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def _compare_and_set(
        self,
        job_id: str,
        *,
        expected_status: JobStatus,
        expected_attempts: int | None = None,
        **changes: Any,
    ) -> Job | None:
        current = self._jobs.get(job_id)
        if current is None or current.status is not expected_status:
            return None
        if expected_attempts is not None and current.attempt_count != expected_attempts:
            return None
        updated = replace(current, **changes)
        self._jobs[job_id] = updated
        return updated

    async def create_job(
        self,
        *,
        call_id: str,
        workspace_id: str,
        audio_object_path: str,
        now: datetime,
    ) -> tuple[Job, bool]:
        existing = await self.get_job_for_call(call_id)
        if existing is not None:
            return existing, False

        job = Job(
            id=str(uuid.uuid4()),
            call_id=call_id,
            workspace_id=workspace_id,
            audio_object_path=audio_object_path,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job.id] = job
        return job, True

    async def claim_next_job(self, now: datetime) -> Job | None:
        candidates = sorted(
            (j for j in self._jobs.values() if j.is_claimable(now)),
            key=lambda j: j.created_at,
        )
        for candidate in candidates:
            claimed = self._compare_and_set(
                candidate.id,
                expected_status=candidate.status,
                expected_attempts=candidate.attempt_count,
                status=JobStatus.PROCESSING,
                started_at=now,
                updated_at=now,
                attempt_count=candidate.attempt_count + 1,
            )
            if claimed is not None:
                return claimed
        return None

    async def update_progress(
        self,
        job_id: str,
        *,
        now: datetime,
        stage: JobStage | None = None,
        flags: Mapping[str, bool] | None = None,
    ) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        changes: dict[str, Any] = {"updated_at": now}
        if stage is not None:
            changes["current_stage"] = stage
        for name, value in (flags or {}).items():
            if name not in _STAGE_FLAGS:
                raise ValueError(f"Unknown stage flag: {name}")
            changes[name] = value
        self._jobs[job_id] = replace(job, **changes)

    async def complete_job(self, job_id: str, *, now: datetime) -> None:
        self._compare_and_set(
            job_id,
            expected_status=JobStatus.PROCESSING,
            status=JobStatus.COMPLETED,
            completed_at=now,
            updated_at=now,
            current_stage=JobStage.DONE,
            transcript_done=True,
            signals_done=True,
            recommendations_done=True,
            summary_done=True,
            next_retry_at=None,
            last_error=None,
            error_category=None,
        )

    async def fail_job(
        self,
        job_id: str,
        *,
        decision: FailureDecision,
        error: str,
        now: datetime,
    ) -> None:
        self._compare_and_set(
            job_id,
            expected_status=JobStatus.PROCESSING,
            status=decision.status,
            next_retry_at=decision.next_retry_at,
            error_category=decision.error_category,
            last_error=truncate_error(error),
            updated_at=now,
        )

    async def requeue_stale_jobs(self, *, now: datetime, older_than_s: int) -> int:
        moved = 0
        for job in list(self._jobs.values()):
            if not is_stale(job, now, older_than_s):
                continue
            decision = decide_stale(job, now)
            updated = self._compare_and_set(
                job.id,
                expected_status=JobStatus.PROCESSING,
                expected_attempts=job.attempt_count,
                status=decision.status,
                next_retry_at=decision.next_retry_at,
                error_category=decision.error_category,
                last_error=STALE_JOB_ERROR,
                updated_at=now,
            )
            if updated is not None:
                moved += 1
        return moved

    async def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def get_job_for_call(self, call_id: str) -> Job | None:
        return next((j for j in self._jobs.values() if j.call_id == call_id), None)

    def all_jobs(self) -> list[Job]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at)


class InMemoryCallStore(CallStore):
    """
    Call records, audio blobs and result rows in dicts.

    Result rows are kept per table name so callers can inspect what would
    have been persisted.
    """

    def __init__(self) -> None:
        self.calls: dict[str, CallRecord] = {}
        self.call_fields: dict[str, dict[str, Any]] = {}
        self.audio: dict[str, bytes] = {}
        self.tables: dict[str, dict[str, Any]] = {
            "call_utterances": {},
            "call_summaries": {},
            "call_signal_sets_3a": {},
            "call_signal_sets_3b": {},
            "call_recommendation_sets": {},
            "call_events": {},
        }

    def add_call(self, record: CallRecord, audio_path: str | None = None, audio: bytes | None = None) -> None:
        self.calls[record.call_id] = record
        if audio_path is not None and audio is not None:
            self.audio[audio_path] = audio

    async def get_call(self, call_id: str) -> CallRecord | None:
        return self.calls.get(call_id)

    async def download_audio(self, object_path: str) -> bytes:
        data = self.audio.get(object_path)
        if data is None:
            raise UpstreamServiceError(
                "storage", f"Failed to download audio {object_path}: 404", status_code=404
            )
        return data

    async def update_call(self, call_id: str, fields: Mapping[str, Any]) -> None:
        self.call_fields.setdefault(call_id, {}).update(fields)
        record = self.calls.get(call_id)
        if record is not None and "status" in fields:
            self.calls[call_id] = replace(record, status=str(fields["status"]))

    async def store_utterances(self, call_id: str, workspace_id: str, records: Sequence[TranscriptRecord]) -> None:
        self.tables["call_utterances"][call_id] = tuple(records)

    async def store_summary(self, call_id: str, workspace_id: str, summary: CallSummary) -> None:
        self.tables["call_summaries"][call_id] = summary

    async def store_signal_set(self, call_id: str, workspace_id: str, signal_set: SignalSet) -> None:
        self.tables["call_signal_sets_3a"][call_id] = signal_set

    async def store_ai_signal_set(self, call_id: str, workspace_id: str, signal_set: AISignalSet) -> None:
        self.tables["call_signal_sets_3b"][call_id] = signal_set

    async def store_recommendation_set(self, call_id: str, workspace_id: str, rec_set: RecommendationSet) -> None:
        self.tables["call_recommendation_sets"][call_id] = rec_set

    async def store_events(self, call_id: str, workspace_id: str, events: Sequence[Event]) -> None:
        self.tables["call_events"][call_id] = tuple(events)

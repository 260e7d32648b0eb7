"""
Durable storage contracts.

Two narrow interfaces over the external storage/queue service:

JobRepository:
- The job table. Claim MUST be atomic against concurrent workers: it is a
  conditional update on the previously observed status, never a
  check-then-update.

CallStore:
- Call metadata, audio objects, and per-call result rows.
- update_call / store_utterances are critical (the pipeline retries them).
- Every other write is best-effort.

Rules:
- No pipeline logic, no retries here.
- Implementations raise UpstreamServiceError on provider failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from ai.recommendations.types import RecommendationSet
from ai.signals.types import AISignalSet
from ai.summary import CallSummary
from conversation.events import Event
from conversation.transcript import TranscriptRecord
from jobs.models import FailureDecision, Job, JobStage
from signals.types import SignalSet


@dataclass(frozen=True)
class CallRecord:
    call_id: str
    workspace_id: str
    status: str
    created_at: datetime | None = None


class JobRepository(ABC):
    """Durable job table."""

    @abstractmethod
    async def create_job(
        self,
        *,
        call_id: str,
        workspace_id: str,
        audio_object_path: str,
        now: datetime,
    ) -> tuple[Job, bool]:
        """Create the job for a call, or return the existing one. (job, created)"""

    @abstractmethod
    async def claim_next_job(self, now: datetime) -> Job | None:
        """
        Atomically move the oldest claimable job to processing.

        Claimable: pending, or retrying with next_retry_at <= now.
        Sets started_at=now and attempt_count+1.
        """

    @abstractmethod
    async def update_progress(
        self,
        job_id: str,
        *,
        now: datetime,
        stage: JobStage | None = None,
        flags: Mapping[str, bool] | None = None,
    ) -> None:
        """Record current_stage and any of the four *_done flags."""

    @abstractmethod
    async def complete_job(self, job_id: str, *, now: datetime) -> None:
        """Mark completed with all four stage flags set."""

    @abstractmethod
    async def fail_job(
        self,
        job_id: str,
        *,
        decision: FailureDecision,
        error: str,
        now: datetime,
    ) -> None:
        """Apply a failure decision and store the (truncated) error."""

    @abstractmethod
    async def requeue_stale_jobs(self, *, now: datetime, older_than_s: int) -> int:
        """Requeue jobs stuck in processing. Returns how many were moved."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        ...

    @abstractmethod
    async def get_job_for_call(self, call_id: str) -> Job | None:
        ...


class CallStore(ABC):
    """Call metadata, audio and per-call result rows."""

    @abstractmethod
    async def get_call(self, call_id: str) -> CallRecord | None:
        ...

    @abstractmethod
    async def download_audio(self, object_path: str) -> bytes:
        ...

    @abstractmethod
    async def update_call(self, call_id: str, fields: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def store_utterances(self, call_id: str, workspace_id: str, records: Sequence[TranscriptRecord]) -> None:
        ...

    @abstractmethod
    async def store_summary(self, call_id: str, workspace_id: str, summary: CallSummary) -> None:
        ...

    @abstractmethod
    async def store_signal_set(self, call_id: str, workspace_id: str, signal_set: SignalSet) -> None:
        ...

    @abstractmethod
    async def store_ai_signal_set(self, call_id: str, workspace_id: str, signal_set: AISignalSet) -> None:
        ...

    @abstractmethod
    async def store_recommendation_set(self, call_id: str, workspace_id: str, rec_set: RecommendationSet) -> None:
        ...

    @abstractmethod
    async def store_events(self, call_id: str, workspace_id: str, events: Sequence[Event]) -> None:
        ...

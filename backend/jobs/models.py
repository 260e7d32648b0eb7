"""
Durable batch job model.

Rules:
- One job per call id (creation is idempotent).
- Mutated only by the worker; never deleted (audit trail).
- Timestamps are timezone-aware UTC datetimes; rows use ISO-8601 strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from constants import JOB_MAX_ATTEMPTS
from resilience.policy import ErrorCategory


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class JobStage(str, Enum):
    """Coarse progress marker stored in current_stage."""

    DOWNLOAD = "download"
    TRANSCRIBE = "transcribe"
    SIGNALS = "signals"
    RECOMMENDATIONS = "recommendations"
    SUMMARY = "summary"
    PERSIST = "persist"
    DONE = "done"


CLAIMABLE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.RETRYING})


@dataclass(frozen=True)
class Job:
    id: str
    call_id: str
    workspace_id: str
    audio_object_path: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    attempt_count: int = 0
    max_attempts: int = JOB_MAX_ATTEMPTS
    started_at: datetime | None = None
    completed_at: datetime | None = None
    next_retry_at: datetime | None = None
    current_stage: JobStage | None = None
    transcript_done: bool = False
    signals_done: bool = False
    recommendations_done: bool = False
    summary_done: bool = False
    last_error: str | None = None
    error_category: ErrorCategory | None = None

    @property
    def attempts_remaining(self) -> bool:
        return self.attempt_count < self.max_attempts

    def is_claimable(self, now: datetime) -> bool:
        if self.status is JobStatus.PENDING:
            return True
        return (
            self.status is JobStatus.RETRYING
            and (self.next_retry_at is None or self.next_retry_at <= now)
        )

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "call_id": self.call_id,
            "workspace_id": self.workspace_id,
            "audio_object_path": self.audio_object_path,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "next_retry_at": _iso(self.next_retry_at),
            "current_stage": self.current_stage.value if self.current_stage else None,
            "transcript_done": self.transcript_done,
            "signals_done": self.signals_done,
            "recommendations_done": self.recommendations_done,
            "summary_done": self.summary_done,
            "last_error": self.last_error,
            "error_category": self.error_category.value if self.error_category else None,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> Job:
        created_at = _parse(row["created_at"]) or datetime.now(timezone.utc)
        return Job(
            id=str(row["id"]),
            call_id=row["call_id"],
            workspace_id=row["workspace_id"],
            audio_object_path=row["audio_object_path"],
            status=JobStatus(row["status"]),
            created_at=created_at,
            updated_at=_parse(row.get("updated_at")) or created_at,
            attempt_count=int(row.get("attempt_count") or 0),
            max_attempts=int(row.get("max_attempts") or JOB_MAX_ATTEMPTS),
            started_at=_parse(row.get("started_at")),
            completed_at=_parse(row.get("completed_at")),
            next_retry_at=_parse(row.get("next_retry_at")),
            current_stage=JobStage(row["current_stage"]) if row.get("current_stage") else None,
            transcript_done=bool(row.get("transcript_done")),
            signals_done=bool(row.get("signals_done")),
            recommendations_done=bool(row.get("recommendations_done")),
            summary_done=bool(row.get("summary_done")),
            last_error=row.get("last_error"),
            error_category=(
                ErrorCategory(row["error_category"]) if row.get("error_category") else None
            ),
        )


@dataclass(frozen=True)
class FailureDecision:
    """What the worker does with a failed attempt."""
    status: JobStatus
    error_category: ErrorCategory
    next_retry_at: datetime | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))

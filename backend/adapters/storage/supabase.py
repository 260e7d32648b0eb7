"""
Supabase storage over its HTTP APIs (PostgREST + Storage).

Only HTTP access is used; no realtime client. Every non-2xx response raises
UpstreamServiceError("storage", ..., status_code=...) so the retry
classifier can decide on the status code.

Job claiming is a compare-and-swap: read candidates, then PATCH filtered on
id, the observed status and the observed attempt_count. An empty
representation means another worker won the race.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

import httpx

from adapters.storage.base import CallRecord, CallStore, JobRepository
from ai.recommendations.types import RecommendationSet
from ai.signals.types import AISignalSet
from ai.summary import CallSummary
from constants import STALE_JOB_ERROR, STORAGE_TIMEOUT_S
from conversation.events import Event, event_to_record
from conversation.transcript import TranscriptRecord
from errors import UpstreamServiceError
from jobs.models import FailureDecision, Job, JobStage, JobStatus
from jobs.policy import decide_stale, truncate_error
from signals.types import SignalSet

JOBS_TABLE = "call_processing_jobs"
CLAIM_CANDIDATES = 5

_STAGE_FLAGS = frozenset({"transcript_done", "signals_done", "recommendations_done", "summary_done"})


class SupabaseRestClient:
    """Thin async client for the PostgREST and Storage endpoints."""

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        http: httpx.AsyncClient | None = None,
        timeout_s: float = STORAGE_TIMEOUT_S,
    ) -> None:
        self._base = url.rstrip("/")
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        }
        self._http = http or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        await self._http.aclose()

    def _rest_url(self, table: str) -> str:
        return f"{self._base}/rest/v1/{table}"

    @staticmethod
    def _check(response: httpx.Response, what: str) -> None:
        if response.is_success:
            return
        raise UpstreamServiceError(
            "storage",
            f"{what} failed: {response.status_code} {response.text[:200]}",
            status_code=response.status_code,
        )

    async def select(self, table: str, params: Mapping[str, str]) -> list[dict[str, Any]]:
        response = await self._http.get(
            self._rest_url(table),
            params={"select": "*", **params},
            headers=self._headers,
        )
        self._check(response, f"select {table}")
        return list(response.json())

    async def insert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        returning: bool = False,
    ) -> list[dict[str, Any]]:
        prefer = "return=representation" if returning else "return=minimal"
        response = await self._http.post(
            self._rest_url(table),
            json=list(rows),
            headers={**self._headers, "Prefer": prefer},
        )
        self._check(response, f"insert {table}")
        return list(response.json()) if returning else []

    async def update(
        self,
        table: str,
        fields: Mapping[str, Any],
        params: Mapping[str, str],
    ) -> list[dict[str, Any]]:
        response = await self._http.patch(
            self._rest_url(table),
            params=dict(params),
            json=dict(fields),
            headers={**self._headers, "Prefer": "return=representation"},
        )
        self._check(response, f"update {table}")
        return list(response.json())

    async def delete(self, table: str, params: Mapping[str, str]) -> None:
        response = await self._http.delete(
            self._rest_url(table),
            params=dict(params),
            headers=self._headers,
        )
        self._check(response, f"delete {table}")

    async def download(self, bucket: str, object_path: str) -> bytes:
        response = await self._http.get(
            f"{self._base}/storage/v1/object/{bucket}/{object_path.lstrip('/')}",
            headers=self._headers,
        )
        self._check(response, f"download {object_path}")
        return response.content


def _eq(value: object) -> str:
    return f"eq.{value}"


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _ms_to_iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


# ============================================================================
# Jobs
# ============================================================================


class SupabaseJobRepository(JobRepository):
    def __init__(self, client: SupabaseRestClient) -> None:
        self._client = client

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

        row = {
            "call_id": call_id,
            "workspace_id": workspace_id,
            "audio_object_path": audio_object_path,
            "status": JobStatus.PENDING.value,
            "created_at": _iso(now),
            "updated_at": _iso(now),
        }
        try:
            rows = await self._client.insert(JOBS_TABLE, [row], returning=True)
        except UpstreamServiceError as exc:
            # Unique(call_id): a concurrent enqueue created it first.
            if exc.status_code != 409:
                raise
            raced = await self.get_job_for_call(call_id)
            if raced is None:
                raise
            return raced, False
        return Job.from_row(rows[0]), True

    async def claim_next_job(self, now: datetime) -> Job | None:
        # retrying rows with no next_retry_at are due immediately, as in is_claimable
        due = f'and(status.eq.retrying,or(next_retry_at.is.null,next_retry_at.lte."{_iso(now)}"))'
        rows = await self._client.select(
            JOBS_TABLE,
            {
                "or": f"(status.eq.pending,{due})",
                "order": "created_at.asc",
                "limit": str(CLAIM_CANDIDATES),
            },
        )
        for row in rows:
            candidate = Job.from_row(row)
            if not candidate.is_claimable(now):
                continue
            claimed = await self._client.update(
                JOBS_TABLE,
                {
                    "status": JobStatus.PROCESSING.value,
                    "started_at": _iso(now),
                    "updated_at": _iso(now),
                    "attempt_count": candidate.attempt_count + 1,
                },
                {
                    "id": _eq(candidate.id),
                    "status": _eq(candidate.status.value),
                    "attempt_count": _eq(candidate.attempt_count),
                },
            )
            if claimed:
                return Job.from_row(claimed[0])
        return None

    async def update_progress(
        self,
        job_id: str,
        *,
        now: datetime,
        stage: JobStage | None = None,
        flags: Mapping[str, bool] | None = None,
    ) -> None:
        fields: dict[str, Any] = {"updated_at": _iso(now)}
        if stage is not None:
            fields["current_stage"] = stage.value
        for name, value in (flags or {}).items():
            if name not in _STAGE_FLAGS:
                raise ValueError(f"Unknown stage flag: {name}")
            fields[name] = value
        await self._client.update(JOBS_TABLE, fields, {"id": _eq(job_id)})

    async def complete_job(self, job_id: str, *, now: datetime) -> None:
        await self._client.update(
            JOBS_TABLE,
            {
                "status": JobStatus.COMPLETED.value,
                "completed_at": _iso(now),
                "updated_at": _iso(now),
                "current_stage": JobStage.DONE.value,
                "transcript_done": True,
                "signals_done": True,
                "recommendations_done": True,
                "summary_done": True,
                "next_retry_at": None,
                "last_error": None,
                "error_category": None,
            },
            {"id": _eq(job_id), "status": _eq(JobStatus.PROCESSING.value)},
        )

    async def fail_job(
        self,
        job_id: str,
        *,
        decision: FailureDecision,
        error: str,
        now: datetime,
    ) -> None:
        await self._client.update(
            JOBS_TABLE,
            {
                "status": decision.status.value,
                "next_retry_at": _iso(decision.next_retry_at) if decision.next_retry_at else None,
                "error_category": decision.error_category.value,
                "last_error": truncate_error(error),
                "updated_at": _iso(now),
            },
            {"id": _eq(job_id), "status": _eq(JobStatus.PROCESSING.value)},
        )

    async def requeue_stale_jobs(self, *, now: datetime, older_than_s: int) -> int:
        cutoff = now - timedelta(seconds=older_than_s)
        rows = await self._client.select(
            JOBS_TABLE,
            {
                "status": _eq(JobStatus.PROCESSING.value),
                "started_at": f"lt.{_iso(cutoff)}",
            },
        )
        moved = 0
        for row in rows:
            job = Job.from_row(row)
            decision = decide_stale(job, now)
            updated = await self._client.update(
                JOBS_TABLE,
                {
                    "status": decision.status.value,
                    "next_retry_at": _iso(decision.next_retry_at) if decision.next_retry_at else None,
                    "error_category": decision.error_category.value,
                    "last_error": STALE_JOB_ERROR,
                    "updated_at": _iso(now),
                },
                {
                    "id": _eq(job.id),
                    "status": _eq(JobStatus.PROCESSING.value),
                    "attempt_count": _eq(job.attempt_count),
                },
            )
            if updated:
                moved += 1
        return moved

    async def get_job(self, job_id: str) -> Job | None:
        rows = await self._client.select(JOBS_TABLE, {"id": _eq(job_id)})
        return Job.from_row(rows[0]) if rows else None

    async def get_job_for_call(self, call_id: str) -> Job | None:
        rows = await self._client.select(JOBS_TABLE, {"call_id": _eq(call_id)})
        return Job.from_row(rows[0]) if rows else None


# ============================================================================
# Calls and results
# ============================================================================


class SupabaseCallStore(CallStore):
    def __init__(self, client: SupabaseRestClient, *, audio_bucket: str) -> None:
        self._client = client
        self._bucket = audio_bucket

    async def get_call(self, call_id: str) -> CallRecord | None:
        rows = await self._client.select("calls", {"id": _eq(call_id)})
        if not rows:
            return None
        row = rows[0]
        created_at = row.get("created_at")
        return CallRecord(
            call_id=str(row["id"]),
            workspace_id=str(row["workspace_id"]),
            status=str(row.get("status") or ""),
            created_at=(
                datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
                if created_at else None
            ),
        )

    async def download_audio(self, object_path: str) -> bytes:
        return await self._client.download(self._bucket, object_path)

    async def update_call(self, call_id: str, fields: Mapping[str, Any]) -> None:
        await self._client.update("calls", fields, {"id": _eq(call_id)})

    async def _replace(self, table: str, call_id: str, rows: Sequence[Mapping[str, Any]]) -> None:
        # Delete then insert, so a retried or requeued job does not duplicate rows.
        await self._client.delete(table, {"call_id": _eq(call_id)})
        if rows:
            await self._client.insert(table, rows)

    async def store_utterances(
        self, call_id: str, workspace_id: str, records: Sequence[TranscriptRecord]
    ) -> None:
        await self._replace(
            "call_utterances",
            call_id,
            [
                {
                    "call_id": call_id,
                    "workspace_id": workspace_id,
                    "seq": seq,
                    "speaker": record.speaker.value,
                    "text": record.text,
                    "confidence": record.confidence,
                    "started_at_ms": record.started_at_ms,
                    "ended_at_ms": record.ended_at_ms,
                }
                for seq, record in enumerate(records)
            ],
        )

    async def store_summary(self, call_id: str, workspace_id: str, summary: CallSummary) -> None:
        await self._replace(
            "call_summaries",
            call_id,
            [{
                "call_id": call_id,
                "workspace_id": workspace_id,
                "summary": {
                    "title": summary.title,
                    "bullets": list(summary.bullets),
                    "text": summary.full_text,
                },
                "version": summary.version,
                "model": summary.model,
            }],
        )

    async def store_signal_set(self, call_id: str, workspace_id: str, signal_set: SignalSet) -> None:
        await self._replace(
            "call_signal_sets_3a",
            call_id,
            [{
                "call_id": call_id,
                "workspace_id": workspace_id,
                "signals": signal_set.to_dict(),
                "version": signal_set.version,
            }],
        )

    async def store_ai_signal_set(
        self, call_id: str, workspace_id: str, signal_set: AISignalSet
    ) -> None:
        await self._replace(
            "call_signal_sets_3b",
            call_id,
            [{
                "call_id": call_id,
                "workspace_id": workspace_id,
                "signals": signal_set.to_dict(),
                "version": signal_set.version,
                "model": signal_set.model,
            }],
        )

    async def store_recommendation_set(
        self, call_id: str, workspace_id: str, rec_set: RecommendationSet
    ) -> None:
        await self._replace(
            "call_recommendation_sets",
            call_id,
            [{
                "call_id": call_id,
                "workspace_id": workspace_id,
                "recommendations": rec_set.to_dict(),
                "version": rec_set.version,
                "model": rec_set.model,
            }],
        )

    async def store_events(self, call_id: str, workspace_id: str, events: Sequence[Event]) -> None:
        rows = []
        for seq, event in enumerate(events):
            record = event_to_record(event)
            rows.append({
                "call_id": call_id,
                "workspace_id": workspace_id,
                "seq": seq,
                "type": record["type"],
                "occurred_at": _ms_to_iso(event.ts_ms),
                "payload": record["payload"],
            })
        await self._replace("call_events", call_id, rows)

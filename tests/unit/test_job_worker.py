# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from datetime import timedelta

import pytest

from adapters.storage.base import CallRecord
from adapters.storage.memory import InMemoryCallStore, InMemoryJobRepository
from adapters.transcription.base import Transcriber, TranscriptSegment
from conversation.enums import Speaker
from errors import UpstreamServiceError
from jobs.models import JobStage, JobStatus
from jobs.worker import JobWorker
from pipeline import batch
from pipeline.batch import CallProcessor
from resilience.policy import ErrorCategory


AUDIO_PATH = "ws-1/call-1.wav"


class StaticTranscriber(Transcriber):
    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error

    async def transcribe(self, audio: bytes, *, content_type: str = "audio/wav"):
        if self.error is not None:
            raise self.error
        return [
            TranscriptSegment(Speaker.REP, "Hi, thanks for the time", 0, 2000, 0.95, 0),
            TranscriptSegment(Speaker.PROSPECT, "Sure, go ahead", 2500, 4000, 0.9, 1),
        ]


def build_worker(
    store, utc_clock, sleep_recorder, transcriber=None, repo=None
) -> tuple[JobWorker, InMemoryJobRepository]:
    store.add_call(
        CallRecord(call_id="call-1", workspace_id="ws-1", status="uploaded", created_at=utc_clock()),
        audio_path=AUDIO_PATH,
        audio=b"RIFF....",
    )
    if repo is None:
        repo = InMemoryJobRepository()
    processor = CallProcessor(
        store=store,
        transcriber=transcriber or StaticTranscriber(),
        llm=None,
        sleep=sleep_recorder,
    )
    worker = JobWorker(
        repo=repo, processor=processor, worker_id="worker-1", clock=utc_clock, sleep=sleep_recorder
    )
    return worker, repo


@pytest.mark.asyncio
async def test_successful_job_completes_with_all_flags(sleep_recorder, utc_clock, captured_logs) -> None:
    store = InMemoryCallStore()
    worker, _ = build_worker(store, utc_clock, sleep_recorder)
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    job = await worker.run_once()

    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert job.current_stage is JobStage.DONE
    assert all((job.transcript_done, job.signals_done, job.recommendations_done, job.summary_done))
    assert store.calls["call-1"].status == "processed"
    event_types = [e["event_type"] for e in captured_logs]
    assert "JOB_CLAIMED" in event_types
    assert "JOB_COMPLETED" in event_types
    assert any(e.get("metric") == "job_total" for e in captured_logs)


@pytest.mark.asyncio
async def test_enqueue_is_idempotent(sleep_recorder, utc_clock, captured_logs) -> None:
    worker, repo = build_worker(InMemoryCallStore(), utc_clock, sleep_recorder)

    first = await worker.enqueue("call-1", "ws-1", AUDIO_PATH)
    second = await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    assert first.id == second.id
    assert len(repo.all_jobs()) == 1
    assert [e["event_type"] for e in captured_logs] == ["JOB_ENQUEUED", "JOB_ALREADY_EXISTS"]


@pytest.mark.asyncio
async def test_transient_download_failure_retries_then_fails(
    failing_store, sleep_recorder, utc_clock
) -> None:
    store = failing_store("download_audio")
    worker, _ = build_worker(store, utc_clock, sleep_recorder)
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    first = await worker.run_once()
    assert first is not None
    assert first.status is JobStatus.RETRYING
    assert first.attempt_count == 1
    assert first.error_category is ErrorCategory.RETRYABLE
    assert first.next_retry_at == utc_clock() + timedelta(seconds=10)
    # Three in-stage download attempts per job attempt.
    assert store.attempts["download_audio"] == 3

    assert await worker.run_once() is None

    utc_clock.advance(10)
    second = await worker.run_once()
    assert second is not None
    assert second.status is JobStatus.RETRYING
    assert second.attempt_count == 2
    assert second.next_retry_at == utc_clock() + timedelta(seconds=30)

    utc_clock.advance(30)
    last = await worker.run_once()
    assert last is not None
    assert last.status is JobStatus.FAILED
    assert last.attempt_count == 3
    assert last.next_retry_at is None
    assert last.last_error is not None and "503" in last.last_error


@pytest.mark.asyncio
async def test_permanent_failure_fails_on_first_attempt(sleep_recorder, utc_clock, captured_logs) -> None:
    transcriber = StaticTranscriber(
        UpstreamServiceError("transcription", "Unsupported audio format", status_code=400)
    )
    worker, _ = build_worker(InMemoryCallStore(), utc_clock, sleep_recorder, transcriber)
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    job = await worker.run_once()

    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.attempt_count == 1
    assert job.error_category is ErrorCategory.PERMANENT
    assert sleep_recorder.delays == []
    assert "JOB_FAILED" in [e["event_type"] for e in captured_logs]


@pytest.mark.asyncio
async def test_processor_crash_counts_against_job(sleep_recorder, utc_clock, captured_logs) -> None:
    worker, _ = build_worker(InMemoryCallStore(), utc_clock, sleep_recorder)

    async def crash(job, on_stage=None):
        raise KeyError("unexpected")

    worker._processor.process = crash  # pylint: disable=protected-access
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    job = await worker.run_once()

    assert job is not None
    assert job.status is JobStatus.RETRYING
    assert "PIPELINE_CRASHED" in [e["event_type"] for e in captured_logs]


@pytest.mark.asyncio
async def test_stale_sweep_requeues_stuck_job(sleep_recorder, utc_clock, captured_logs) -> None:
    worker, repo = build_worker(InMemoryCallStore(), utc_clock, sleep_recorder)
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)
    stuck = await repo.claim_next_job(utc_clock())
    assert stuck is not None

    utc_clock.advance(16 * 60)
    moved = await worker.sweep_stale()

    assert moved == 1
    assert (await repo.get_job(stuck.id)).status is JobStatus.RETRYING
    assert any(e["event_type"] == "STALE_JOBS_REQUEUED" for e in captured_logs)


@pytest.mark.asyncio
async def test_run_loop_logs_errors_and_stops(sleep_recorder, utc_clock, captured_logs) -> None:
    worker, _ = build_worker(InMemoryCallStore(), utc_clock, sleep_recorder)
    stop = asyncio.Event()
    ticks = 0

    async def failing_tick() -> None:
        nonlocal ticks
        ticks += 1
        if ticks >= 2:
            stop.set()
        raise RuntimeError("database unreachable")

    worker.tick = failing_tick
    worker._poll_interval_s = 0  # pylint: disable=protected-access

    await asyncio.wait_for(worker.run(stop), timeout=1)

    event_types = [e["event_type"] for e in captured_logs]
    assert event_types[0] == "WORKER_STARTED"
    assert event_types.count("WORKER_LOOP_ERROR") == 2
    assert event_types[-1] == "WORKER_STOPPED"


class ProgressOutageRepository(InMemoryJobRepository):
    def __init__(self) -> None:
        super().__init__()
        self.progress_attempts = 0

    async def update_progress(self, job_id, *, now, stage=None, flags=None) -> None:
        self.progress_attempts += 1
        raise UpstreamServiceError("storage", "update call_processing_jobs failed: 503", status_code=503)


@pytest.mark.asyncio
async def test_progress_write_outage_does_not_fail_the_job(sleep_recorder, utc_clock, captured_logs) -> None:
    store = InMemoryCallStore()
    repo = ProgressOutageRepository()
    worker, _ = build_worker(store, utc_clock, sleep_recorder, repo=repo)
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    job = await worker.run_once()

    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert job.last_error is None
    assert store.calls["call-1"].status == "processed"
    # Each progress write is retried before giving up.
    assert repo.progress_attempts >= 3
    assert repo.progress_attempts % 3 == 0
    failed = [e for e in captured_logs if e["event_type"] == "JOB_PROGRESS_WRITE_FAILED"]
    assert len(failed) == repo.progress_attempts // 3
    assert failed[0]["stage"] == JobStage.DOWNLOAD.value
    assert "PIPELINE_STAGE_FAILED" not in [e["event_type"] for e in captured_logs]


@pytest.mark.asyncio
async def test_extractor_defect_fails_the_attempt(
    monkeypatch, sleep_recorder, utc_clock, captured_logs
) -> None:
    def broken_extractor(context):
        raise ZeroDivisionError("division by zero")

    monkeypatch.setattr(batch, "extract_signals", broken_extractor)
    worker, _ = build_worker(InMemoryCallStore(), utc_clock, sleep_recorder)
    await worker.enqueue("call-1", "ws-1", AUDIO_PATH)

    job = await worker.run_once()

    assert job is not None
    assert job.status is JobStatus.RETRYING
    assert not job.signals_done
    assert job.last_error == "division by zero"
    assert "PIPELINE_CRASHED" in [e["event_type"] for e in captured_logs]

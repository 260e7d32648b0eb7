"""
Post-call batch pipeline.

Runs one recorded call end to end:

    download -> transcribe -> events -> reduce/serialize -> signals
    -> ai_signals -> recommendations -> summary -> persist

Rules:
- download and transcribe are the only stages that abort the job; they
  return ok=False with the cause so the worker can classify it.
- The deterministic extractor is not guarded: a defect there propagates to
  the worker and counts against the job.
- The AI stages and the summary degrade to an empty, versioned result and
  the call still yields whatever succeeded.
- Critical writes (call record, utterances) are retried; best-effort writes
  each swallow their own failure.
- Each stage is timed (METRIC_TIMER) and reported through on_stage; the
  worker makes those progress writes best-effort.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Sequence

from adapters.llm.base import JsonCompletionClient
from adapters.storage.base import CallStore
from adapters.transcription.base import Transcriber, TranscriptSegment
from ai.recommendations.generator import generate_recommendations
from ai.recommendations.types import RecommendationSet
from ai.signals.classifier import classify_ai_signals
from ai.signals.types import AISignalSet
from ai.summary import CallSummary, generate_summary
from constants import (
    AI_SIGNALS_RETRY,
    CRITICAL_WRITE_RETRY,
    DOWNLOAD_RETRY,
    RECOMMENDATIONS_RETRY,
    SILENCE_GAP_MS,
    SUMMARY_RETRY,
    TRANSCRIBE_RETRY,
)
from conversation.events import (
    CallEnded,
    CallStarted,
    Event,
    EventType,
    SilenceDetected,
    SpeakerTurnDetected,
    TranscriptFinalized,
)
from conversation.reducer import reduce_all
from conversation.serializer import ConversationContext, serialize_for_ai
from conversation.transcript import TranscriptRecord
from errors import EmptyAudioError, ServiceNotConfiguredError
from jobs.models import Job, JobStage
from observability.logger import log_error, log_event
from observability.metrics import timed
from resilience.policy import RetryPolicy
from resilience.runner import with_retry
from signals.extractor import extract_signals
from signals.types import SignalSet

StageCallback = Callable[[JobStage, Mapping[str, bool]], Awaitable[None]]

CALL_STATUS_PROCESSED = "processed"


@dataclass(frozen=True)
class ProcessingResult:
    ok: bool
    call_id: str
    transcript: tuple[TranscriptRecord, ...] = ()
    context: ConversationContext | None = None
    signals: SignalSet | None = None
    ai_signals: AISignalSet | None = None
    recommendations: RecommendationSet | None = None
    summary: CallSummary | None = None
    error: str | None = None
    cause: BaseException | None = None


# ============================================================================
# Segments -> records / events
# ============================================================================


def segments_to_records(
    segments: Sequence[TranscriptSegment],
    call_start_ms: int,
    call_id: str,
) -> tuple[TranscriptRecord, ...]:
    return tuple(
        TranscriptRecord(
            speaker=s.speaker,
            text=s.text,
            started_at_ms=call_start_ms + s.start_ms,
            ended_at_ms=call_start_ms + s.end_ms,
            confidence=s.confidence,
            utterance_id=f"utt-{call_id}-{i}",
        )
        for i, s in enumerate(segments)
    )


def transcript_to_events(
    call_id: str,
    workspace_id: str,
    records: Sequence[TranscriptRecord],
    call_start_ms: int,
) -> list[Event]:
    """
    Synthesize the event stream a live call would have produced.

    call.started, then per record: silence.detected when the gap since the
    previous record exceeds SILENCE_GAP_MS, speaker.turn_detected and
    transcript.finalized; finally call.ended at the last record's end.
    """
    events: list[Event] = [
        CallStarted(
            event_type=EventType.CALL_STARTED,
            ts_ms=call_start_ms,
            call_id=call_id,
            workspace_id=workspace_id,
        )
    ]

    previous_end_ms: int | None = None
    for i, record in enumerate(records):
        if previous_end_ms is not None:
            gap_ms = record.started_at_ms - previous_end_ms
            if gap_ms > SILENCE_GAP_MS:
                events.append(SilenceDetected(
                    event_type=EventType.SILENCE_DETECTED,
                    ts_ms=record.started_at_ms,
                    call_id=call_id,
                    duration_ms=gap_ms,
                ))

        events.append(SpeakerTurnDetected(
            event_type=EventType.SPEAKER_TURN_DETECTED,
            ts_ms=record.started_at_ms,
            call_id=call_id,
            speaker=record.speaker,
        ))
        events.append(TranscriptFinalized(
            event_type=EventType.TRANSCRIPT_FINALIZED,
            ts_ms=record.ended_at_ms,
            call_id=call_id,
            utterance_id=record.utterance_id or f"utt-{call_id}-{i}",
            speaker=record.speaker,
            text=record.text,
            started_at_ms=record.started_at_ms,
            ended_at_ms=record.ended_at_ms,
            confidence=record.confidence,
        ))
        previous_end_ms = (
            record.ended_at_ms if previous_end_ms is None
            else max(previous_end_ms, record.ended_at_ms)
        )

    events.append(CallEnded(
        event_type=EventType.CALL_ENDED,
        ts_ms=previous_end_ms if previous_end_ms is not None else call_start_ms,
        call_id=call_id,
    ))
    return events


async def _no_stage_callback(stage: JobStage, flags: Mapping[str, bool]) -> None:
    return None


# ============================================================================
# Processor
# ============================================================================


class CallProcessor:
    """
    Runs the batch pipeline for one job.

    Collaborators are injected; a missing LLM degrades every AI stage, a
    missing transcriber fails the job permanently.
    """

    def __init__(
        self,
        *,
        store: CallStore,
        transcriber: Transcriber | None,
        llm: JsonCompletionClient | None,
        classifier_model: str = "gpt-4o-mini",
        recommender_model: str = "gpt-4o",
        summary_model: str = "gpt-4o-mini",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._transcriber = transcriber
        self._llm = llm
        self._classifier_model = classifier_model
        self._recommender_model = recommender_model
        self._summary_model = summary_model
        self._sleep = sleep

    async def process(self, job: Job, on_stage: StageCallback | None = None) -> ProcessingResult:
        report = on_stage or _no_stage_callback
        call_id = job.call_id

        log_event({"event_type": "PIPELINE_STARTED", "call_id": call_id, "job_id": job.id})

        # --------------------------------------------------------------
        # 1-2. Download + transcribe (fatal on failure)
        # --------------------------------------------------------------
        await report(JobStage.DOWNLOAD, {})
        try:
            with timed("pipeline_stage_download", call_id=call_id, job_id=job.id):
                audio = await self._download(job)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            return self._abort(job, JobStage.DOWNLOAD, exc)

        await report(JobStage.TRANSCRIBE, {})
        try:
            with timed("pipeline_stage_transcribe", call_id=call_id, job_id=job.id):
                segments = await self._transcribe(job, audio)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            return self._abort(job, JobStage.TRANSCRIBE, exc)

        await report(JobStage.TRANSCRIBE, {"transcript_done": True})

        # --------------------------------------------------------------
        # 3-4. Events, reduce, serialize
        # --------------------------------------------------------------
        call_start_ms = await self._call_start_ms(job)
        transcript = segments_to_records(segments, call_start_ms, call_id)
        events = transcript_to_events(call_id, job.workspace_id, transcript, call_start_ms)
        state = reduce_all(events)
        context = serialize_for_ai(state)

        log_event({
            "event_type": "PIPELINE_STATE_BUILT",
            "call_id": call_id,
            "job_id": job.id,
            "segments": len(segments),
            "events": len(events),
            "utterances": state.transcript_window.total_utterance_count,
        })

        # --------------------------------------------------------------
        # 5-6. Deterministic + AI signals
        # --------------------------------------------------------------
        await report(JobStage.SIGNALS, {})
        with timed("pipeline_stage_signals", call_id=call_id, job_id=job.id):
            signals = extract_signals(context)

        with timed("pipeline_stage_ai_signals", call_id=call_id, job_id=job.id):
            ai_signals = await classify_ai_signals(
                context,
                llm=self._llm,
                model=self._classifier_model,
                retry_policy=RetryPolicy.of(AI_SIGNALS_RETRY),
                sleep=self._sleep,
            )
        await report(JobStage.SIGNALS, {"signals_done": True})

        # --------------------------------------------------------------
        # 7. Recommendations
        # --------------------------------------------------------------
        await report(JobStage.RECOMMENDATIONS, {})
        with timed("pipeline_stage_recommendations", call_id=call_id, job_id=job.id):
            recommendations = await generate_recommendations(
                context,
                signals,
                ai_signals,
                llm=self._llm,
                model=self._recommender_model,
                retry_policy=RetryPolicy.of(RECOMMENDATIONS_RETRY),
                sleep=self._sleep,
            )
        await report(JobStage.RECOMMENDATIONS, {"recommendations_done": True})

        # --------------------------------------------------------------
        # 8. Summary
        # --------------------------------------------------------------
        await report(JobStage.SUMMARY, {})
        with timed("pipeline_stage_summary", call_id=call_id, job_id=job.id):
            summary = await generate_summary(
                transcript,
                signals,
                ai_signals,
                recommendations,
                llm=self._llm,
                model=self._summary_model,
                retry_policy=RetryPolicy.of(SUMMARY_RETRY),
                sleep=self._sleep,
            )
        await report(JobStage.SUMMARY, {"summary_done": True})

        # --------------------------------------------------------------
        # 9. Persist
        # --------------------------------------------------------------
        await report(JobStage.PERSIST, {})
        with timed("pipeline_stage_persist", call_id=call_id, job_id=job.id):
            await self._persist(
                job,
                duration_ms=state.timing.call_duration_ms,
                relative=segments_to_records(segments, 0, call_id),
                events=events,
                signals=signals,
                ai_signals=ai_signals,
                recommendations=recommendations,
                summary=summary,
            )

        log_event({
            "event_type": "PIPELINE_COMPLETED",
            "call_id": call_id,
            "job_id": job.id,
            "signals": len(signals.signals),
            "ai_signals": len(ai_signals.signals),
            "ai_signals_outcome": ai_signals.outcome.value,
            "recommendations": len(recommendations.recommendations),
            "recommendations_outcome": recommendations.outcome.value,
        })

        return ProcessingResult(
            ok=True,
            call_id=call_id,
            transcript=transcript,
            context=context,
            signals=signals,
            ai_signals=ai_signals,
            recommendations=recommendations,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    def _abort(job: Job, stage: JobStage, exc: Exception) -> ProcessingResult:
        log_error("PIPELINE_STAGE_FAILED", exc, call_id=job.call_id, job_id=job.id, stage=stage.value)
        return ProcessingResult(ok=False, call_id=job.call_id, error=str(exc), cause=exc)

    async def _download(self, job: Job) -> bytes:
        audio = await with_retry(
            lambda: self._store.download_audio(job.audio_object_path),
            policy=RetryPolicy.of(DOWNLOAD_RETRY),
            name="download_audio",
            call_id=job.call_id,
            sleep=self._sleep,
        )
        if not audio:
            raise EmptyAudioError(job.audio_object_path)
        return audio

    async def _transcribe(self, job: Job, audio: bytes) -> list[TranscriptSegment]:
        transcriber = self._transcriber
        if transcriber is None:
            raise ServiceNotConfiguredError("transcription")
        return await with_retry(
            lambda: transcriber.transcribe(audio),
            policy=RetryPolicy.of(TRANSCRIBE_RETRY),
            name="transcribe",
            call_id=job.call_id,
            sleep=self._sleep,
        )

    async def _call_start_ms(self, job: Job) -> int:
        """Call record created_at, else the job's created_at."""
        try:
            call = await self._store.get_call(job.call_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_error("CALL_LOOKUP_FAILED", exc, call_id=job.call_id, job_id=job.id)
            call = None
        started = call.created_at if call is not None and call.created_at else job.created_at
        return int(started.timestamp() * 1000)

    async def _persist(
        self,
        job: Job,
        *,
        duration_ms: int,
        relative: Sequence[TranscriptRecord],
        events: Sequence[Event],
        signals: SignalSet,
        ai_signals: AISignalSet,
        recommendations: RecommendationSet,
        summary: CallSummary,
    ) -> None:
        call_id, workspace_id = job.call_id, job.workspace_id

        call_fields: dict[str, Any] = {
            "status": CALL_STATUS_PROCESSED,
            "duration_ms": duration_ms,
            "title": summary.title,
        }
        await self._critical_write(
            "update_call", job, lambda: self._store.update_call(call_id, call_fields)
        )
        await self._critical_write(
            "store_utterances",
            job,
            lambda: self._store.store_utterances(call_id, workspace_id, relative),
        )

        best_effort: list[tuple[str, Callable[[], Awaitable[None]]]] = [
            ("store_summary", lambda: self._store.store_summary(call_id, workspace_id, summary)),
            ("store_signal_set", lambda: self._store.store_signal_set(call_id, workspace_id, signals)),
            ("store_ai_signal_set", lambda: self._store.store_ai_signal_set(call_id, workspace_id, ai_signals)),
            (
                "store_recommendation_set",
                lambda: self._store.store_recommendation_set(call_id, workspace_id, recommendations),
            ),
            ("store_events", lambda: self._store.store_events(call_id, workspace_id, events)),
        ]
        for name, write in best_effort:
            try:
                await write()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_error("STORAGE_WRITE_FAILED", exc, call_id=call_id, job_id=job.id, write=name)

    async def _critical_write(
        self,
        name: str,
        job: Job,
        write: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await with_retry(
                write,
                policy=RetryPolicy.of(CRITICAL_WRITE_RETRY),
                name=name,
                call_id=job.call_id,
                sleep=self._sleep,
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_error(
                "STORAGE_WRITE_FAILED", exc, call_id=job.call_id, job_id=job.id, write=name, critical=True
            )

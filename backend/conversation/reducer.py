"""
Pure conversation state reducer.

(state | None, event) -> state

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs, so replaying the same
  ordered events always yields an identical state.
- Total: every EventType has exactly one branch; anything else raises
  UnhandledEventError. Missing state raises PreconditionError.
- Never catches: a failure here is a defect and must propagate.
"""

from __future__ import annotations

from dataclasses import replace
from functools import reduce as fold
from typing import Callable, Iterable

from constants import HIGH_CONFIDENCE_THRESHOLD, LOW_CONFIDENCE_THRESHOLD
from conversation.enums import Phase, Speaker
from conversation.events import (
    EVENT_CLASSES,
    AudioCaptureStarted,
    AudioCaptureStopped,
    CallEnded,
    CallStarted,
    Event,
    EventType,
    SilenceDetected,
    SpeakerTurnDetected,
    TranscriptFinalized,
    TranscriptReceived,
)
from conversation.state import (
    ConfidenceMetrics,
    ConversationState,
    DominanceMetrics,
    SpeakerMetrics,
    SpeakerStreak,
    TranscriptWindow,
    Utterance,
)
from errors import PreconditionError, UnhandledEventError


# =============================================================================
# Public API
# =============================================================================

def reduce(state: ConversationState | None, event: Event) -> ConversationState:
    """Apply one event to the state and return the new state."""
    handler = _HANDLERS.get(event.event_type)
    expected = EVENT_CLASSES.get(event.event_type)
    if handler is None or expected is None or not isinstance(event, expected):
        raise UnhandledEventError(
            f"Unhandled event: {type(event).__name__} ({event.event_type!r})"
        )
    return handler(state, event)


def reduce_all(
    events: Iterable[Event],
    state: ConversationState | None = None,
) -> ConversationState | None:
    """Fold an ordered event sequence. Returns None for an empty sequence."""
    return fold(reduce, events, state)


# =============================================================================
# Helpers (pure)
# =============================================================================

def _require_state(
    state: ConversationState | None,
    event: Event,
) -> ConversationState:
    if state is None:
        raise PreconditionError(
            f"Cannot apply {event.event_type.value} without an initialized state"
        )
    return state


def _touch(state: ConversationState, ts_ms: int) -> ConversationState:
    return replace(
        state,
        last_event_at_ms=ts_ms,
        event_count=state.event_count + 1,
    )


def _word_count(text: str) -> int:
    return len(text.split())


def _update_speaker_metrics(prev: SpeakerMetrics, utterance: Utterance) -> SpeakerMetrics:
    count = prev.utterance_count + 1
    total_ms = prev.total_speaking_time_ms + utterance.duration_ms
    return SpeakerMetrics(
        utterance_count=count,
        total_speaking_time_ms=total_ms,
        total_word_count=prev.total_word_count + _word_count(utterance.text),
        avg_utterance_duration_ms=total_ms / count,
    )


def _update_window(prev: TranscriptWindow, utterance: Utterance) -> TranscriptWindow:
    utterances = prev.utterances + (utterance,)
    overflow = max(0, len(utterances) - prev.window_size)
    return TranscriptWindow(
        utterances=utterances[overflow:],
        window_size=prev.window_size,
        total_utterance_count=prev.total_utterance_count + 1,
        window_start_index=prev.window_start_index + overflow,
    )


def _update_confidence(
    prev: ConfidenceMetrics,
    value: float,
    total_count: int,
) -> ConfidenceMetrics:
    prev_count = total_count - 1
    if prev_count == 0:
        avg = value
    else:
        avg = (prev.avg_confidence * prev_count + value) / total_count

    high_count = prev.high_confidence_count + (1 if value >= HIGH_CONFIDENCE_THRESHOLD else 0)
    low_count = prev.low_confidence_count + (1 if value < LOW_CONFIDENCE_THRESHOLD else 0)

    return ConfidenceMetrics(
        avg_confidence=avg,
        min_confidence=min(prev.min_confidence, value),
        max_confidence=max(prev.max_confidence, value),
        low_confidence_count=low_count,
        high_confidence_count=high_count,
        high_confidence_ratio=high_count / total_count,
    )


def _talk_ratios(rep: SpeakerMetrics, prospect: SpeakerMetrics) -> tuple[float, float]:
    total = rep.total_speaking_time_ms + prospect.total_speaking_time_ms
    if total == 0:
        return 0.0, 0.0
    return rep.total_speaking_time_ms / total, prospect.total_speaking_time_ms / total


# =============================================================================
# Handlers
# =============================================================================

def _on_call_started(state: ConversationState | None, event: CallStarted) -> ConversationState:
    if state is not None:
        raise PreconditionError(
            f"call.started for {event.call_id} received but state already exists"
        )
    if not event.workspace_id:
        raise PreconditionError("call.started is missing workspace_id")

    return ConversationState(
        call_id=event.call_id,
        workspace_id=event.workspace_id,
        started_at_ms=event.ts_ms,
        last_event_at_ms=event.ts_ms,
        event_count=1,
    )


def _on_call_ended(state: ConversationState | None, event: CallEnded) -> ConversationState:
    current = _require_state(state, event)
    return replace(
        _touch(current, event.ts_ms),
        timing=replace(current.timing, call_duration_ms=event.ts_ms - current.started_at_ms),
        phase=Phase.ENDED,
    )


def _on_transcript_finalized(
    state: ConversationState | None,
    event: TranscriptFinalized,
) -> ConversationState:
    current = _require_state(state, event)

    utterance = Utterance(
        id=event.utterance_id,
        speaker=event.speaker,
        text=event.text,
        started_at_ms=event.started_at_ms,
        ended_at_ms=event.ended_at_ms,
        duration_ms=event.ended_at_ms - event.started_at_ms,
        confidence=event.confidence,
    )

    window = _update_window(current.transcript_window, utterance)

    rep = current.rep_metrics
    prospect = current.prospect_metrics
    if event.speaker is Speaker.REP:
        rep = _update_speaker_metrics(rep, utterance)
    else:
        prospect = _update_speaker_metrics(prospect, utterance)

    rep_ratio, prospect_ratio = _talk_ratios(rep, prospect)

    # Finalized segments are stamped with their end time, not arrival time
    return replace(
        _touch(current, event.ended_at_ms),
        transcript_window=window,
        rep_metrics=rep,
        prospect_metrics=prospect,
        timing=replace(
            current.timing,
            call_duration_ms=event.ended_at_ms - current.started_at_ms,
        ),
        dominance=replace(
            current.dominance,
            rep_talk_ratio=rep_ratio,
            prospect_talk_ratio=prospect_ratio,
        ),
        confidence=_update_confidence(
            current.confidence,
            event.confidence,
            window.total_utterance_count,
        ),
    )


def _on_speaker_turn(
    state: ConversationState | None,
    event: SpeakerTurnDetected,
) -> ConversationState:
    current = _require_state(state, event)

    prev = current.dominance.current_streak
    if prev.speaker is event.speaker:
        streak = SpeakerStreak(speaker=event.speaker, count=prev.count + 1)
    else:
        streak = SpeakerStreak(speaker=event.speaker, count=1)

    dominance: DominanceMetrics = replace(
        current.dominance,
        current_streak=streak,
        longest_streak=max(current.dominance.longest_streak, streak.count),
    )
    return replace(_touch(current, event.ts_ms), dominance=dominance)


def _on_silence(state: ConversationState | None, event: SilenceDetected) -> ConversationState:
    current = _require_state(state, event)

    timing = current.timing
    total = timing.total_silence_ms + event.duration_ms
    count = timing.silence_count + 1

    return replace(
        _touch(current, event.ts_ms),
        timing=replace(
            timing,
            call_duration_ms=event.ts_ms - current.started_at_ms,
            total_silence_ms=total,
            silence_count=count,
            longest_silence_ms=max(timing.longest_silence_ms, event.duration_ms),
            avg_silence_ms=total / count,
        ),
    )


def _on_bookkeeping(
    state: ConversationState | None,
    event: TranscriptReceived | AudioCaptureStarted | AudioCaptureStopped,
) -> ConversationState:
    return _touch(_require_state(state, event), event.ts_ms)


def _on_passthrough(state: ConversationState | None, event: Event) -> ConversationState:
    # Live-assist events are recorded in the event log, not in the state
    return _require_state(state, event)


_HANDLERS: dict[EventType, Callable[[ConversationState | None, Event], ConversationState]] = {
    EventType.CALL_STARTED: _on_call_started,  # type: ignore[dict-item]
    EventType.CALL_ENDED: _on_call_ended,  # type: ignore[dict-item]
    EventType.TRANSCRIPT_FINALIZED: _on_transcript_finalized,  # type: ignore[dict-item]
    EventType.SPEAKER_TURN_DETECTED: _on_speaker_turn,  # type: ignore[dict-item]
    EventType.SILENCE_DETECTED: _on_silence,  # type: ignore[dict-item]
    EventType.TRANSCRIPT_RECEIVED: _on_bookkeeping,  # type: ignore[dict-item]
    EventType.AUDIO_CAPTURE_STARTED: _on_bookkeeping,  # type: ignore[dict-item]
    EventType.AUDIO_CAPTURE_STOPPED: _on_bookkeeping,  # type: ignore[dict-item]
    EventType.QUESTION_DETECTED: _on_passthrough,
    EventType.SUGGESTION_GENERATED: _on_passthrough,
}

# Exhaustiveness: every event kind must have a branch.
_MISSING = set(EventType) - set(_HANDLERS)
if _MISSING:
    raise UnhandledEventError(
        f"Reducer has no branch for: {sorted(e.value for e in _MISSING)}"
    )

# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import dataclass

import pytest

from constants import TRANSCRIPT_WINDOW_SIZE
from conversation.enums import Phase, Speaker
from conversation.events import (
    AudioCaptureStarted,
    CallEnded,
    CallStarted,
    Event,
    EventType,
    QuestionDetected,
    SilenceDetected,
    SpeakerTurnDetected,
    TranscriptFinalized,
    TranscriptReceived,
)
from conversation.reducer import reduce, reduce_all
from errors import PreconditionError, UnhandledEventError


T0 = 1_700_000_000_000
CALL = "call-1"


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

def call_started(ts_ms: int = T0, workspace_id: str = "ws-1") -> CallStarted:
    return CallStarted(
        event_type=EventType.CALL_STARTED, ts_ms=ts_ms, call_id=CALL, workspace_id=workspace_id
    )


def call_ended(ts_ms: int) -> CallEnded:
    return CallEnded(event_type=EventType.CALL_ENDED, ts_ms=ts_ms, call_id=CALL)


def finalized(
    speaker: Speaker,
    text: str,
    start: int,
    end: int,
    confidence: float = 0.95,
    utterance_id: str = "u",
) -> TranscriptFinalized:
    return TranscriptFinalized(
        event_type=EventType.TRANSCRIPT_FINALIZED,
        ts_ms=end,
        call_id=CALL,
        utterance_id=utterance_id,
        speaker=speaker,
        text=text,
        started_at_ms=start,
        ended_at_ms=end,
        confidence=confidence,
    )


def turn(speaker: Speaker, ts_ms: int = T0) -> SpeakerTurnDetected:
    return SpeakerTurnDetected(
        event_type=EventType.SPEAKER_TURN_DETECTED, ts_ms=ts_ms, call_id=CALL, speaker=speaker
    )


def silence(duration_ms: int, ts_ms: int) -> SilenceDetected:
    return SilenceDetected(
        event_type=EventType.SILENCE_DETECTED, ts_ms=ts_ms, call_id=CALL, duration_ms=duration_ms
    )


def example_events() -> list[Event]:
    return [
        call_started(),
        finalized(Speaker.REP, "Thanks for joining", T0 + 1000, T0 + 5000, 0.95),
        finalized(Speaker.PROSPECT, "What's the price?", T0 + 6000, T0 + 10000, 0.92),
    ]


# ---------------------------------------------------------------------
# Lifecycle and preconditions
# ---------------------------------------------------------------------

def test_call_started_creates_initial_state() -> None:
    state = reduce(None, call_started())

    assert state.call_id == CALL
    assert state.workspace_id == "ws-1"
    assert state.started_at_ms == T0
    assert state.last_event_at_ms == T0
    assert state.phase is Phase.ACTIVE
    assert state.event_count == 1


def test_call_started_on_existing_state_is_a_precondition_error() -> None:
    state = reduce(None, call_started())
    with pytest.raises(PreconditionError):
        reduce(state, call_started())


def test_call_started_without_workspace_is_rejected() -> None:
    with pytest.raises(PreconditionError):
        reduce(None, call_started(workspace_id=""))


@pytest.mark.parametrize(
    "event",
    [
        finalized(Speaker.REP, "hello", T0, T0 + 100),
        turn(Speaker.REP),
        silence(1000, T0),
        call_ended(T0),
        TranscriptReceived(event_type=EventType.TRANSCRIPT_RECEIVED, ts_ms=T0, call_id=CALL, text="hi"),
    ],
)
def test_events_without_state_raise_precondition_error(event: Event) -> None:
    with pytest.raises(PreconditionError):
        reduce(None, event)


def test_unknown_event_kind_is_rejected() -> None:
    @dataclass(frozen=True)
    class Bogus(Event):
        pass

    state = reduce(None, call_started())
    with pytest.raises(UnhandledEventError):
        reduce(state, Bogus(event_type=EventType.CALL_ENDED, ts_ms=T0, call_id=CALL))


def test_call_ended_sets_phase_and_duration() -> None:
    state = reduce_all([call_started(), call_ended(T0 + 90_000)])

    assert state is not None
    assert state.phase is Phase.ENDED
    assert state.timing.call_duration_ms == 90_000


# ---------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------

def test_example_call_metrics() -> None:
    state = reduce_all(example_events())

    assert state is not None
    assert state.rep_metrics.utterance_count == 1
    assert state.prospect_metrics.utterance_count == 1
    # 4000ms each: speakerTime / (repTime + prospectTime)
    assert state.dominance.rep_talk_ratio == pytest.approx(0.5)
    assert state.dominance.prospect_talk_ratio == pytest.approx(0.5)
    assert state.confidence.avg_confidence == pytest.approx((0.95 + 0.92) / 2)
    assert state.last_event_at_ms == T0 + 10000
    assert state.event_count == 3


def test_talk_ratio_is_zero_without_speech() -> None:
    state = reduce(None, call_started())
    assert state.dominance.rep_talk_ratio == 0.0
    assert state.dominance.prospect_talk_ratio == 0.0


def test_running_average_confidence_and_bounds() -> None:
    state = reduce_all([
        call_started(),
        finalized(Speaker.REP, "a", T0, T0 + 100, 0.9),
        finalized(Speaker.PROSPECT, "b", T0 + 200, T0 + 300, 0.6),
        finalized(Speaker.REP, "c", T0 + 400, T0 + 500, 0.75),
    ])

    assert state is not None
    assert state.confidence.avg_confidence == pytest.approx(0.75)
    assert state.confidence.min_confidence == pytest.approx(0.6)
    assert state.confidence.max_confidence == pytest.approx(0.9)
    assert state.confidence.low_confidence_count == 1
    assert state.confidence.high_confidence_count == 1
    assert state.confidence.high_confidence_ratio == pytest.approx(1 / 3)


def test_speaker_streak_increments_and_resets() -> None:
    state = reduce_all([
        call_started(),
        turn(Speaker.REP),
        turn(Speaker.REP),
        turn(Speaker.REP),
        turn(Speaker.PROSPECT),
    ])

    assert state is not None
    assert state.dominance.current_streak.speaker is Speaker.PROSPECT
    assert state.dominance.current_streak.count == 1
    assert state.dominance.longest_streak == 3


def test_silence_metrics() -> None:
    state = reduce_all([
        call_started(),
        silence(1000, T0 + 2000),
        silence(3000, T0 + 8000),
    ])

    assert state is not None
    assert state.timing.silence_count == 2
    assert state.timing.total_silence_ms == 4000
    assert state.timing.longest_silence_ms == 3000
    assert state.timing.avg_silence_ms == pytest.approx(2000.0)


def test_window_evicts_oldest_but_keeps_history_counters() -> None:
    extra = 5
    events: list[Event] = [call_started()]
    for i in range(TRANSCRIPT_WINDOW_SIZE + extra):
        events.append(
            finalized(Speaker.REP, f"line {i}", T0 + i * 100, T0 + i * 100 + 50, utterance_id=f"u{i}")
        )

    state = reduce_all(events)

    assert state is not None
    window = state.transcript_window
    assert len(window.utterances) == TRANSCRIPT_WINDOW_SIZE
    assert window.total_utterance_count == TRANSCRIPT_WINDOW_SIZE + extra
    assert window.window_start_index == extra
    assert window.utterances[0].id == f"u{extra}"


def test_bookkeeping_events_only_touch_counters() -> None:
    started = reduce(None, call_started())
    state = reduce(
        started,
        AudioCaptureStarted(event_type=EventType.AUDIO_CAPTURE_STARTED, ts_ms=T0 + 5, call_id=CALL),
    )

    assert state.event_count == 2
    assert state.last_event_at_ms == T0 + 5
    assert state.transcript_window == started.transcript_window


def test_question_detected_leaves_state_unchanged() -> None:
    started = reduce(None, call_started())
    event = QuestionDetected(
        event_type=EventType.QUESTION_DETECTED,
        ts_ms=T0 + 10,
        call_id=CALL,
        question="How much?",
        confidence=0.9,
    )
    assert reduce(started, event) == started


# ---------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------

def test_replay_is_deterministic() -> None:
    events = example_events() + [turn(Speaker.PROSPECT, T0 + 11000), silence(2500, T0 + 13000)]

    assert reduce_all(events) == reduce_all(list(events))


def test_reduce_all_of_nothing_is_none() -> None:
    assert reduce_all([]) is None

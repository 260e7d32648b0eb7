"""
Domain event definitions for the conversation state reducer.

Rules:
- Events describe facts that have occurred on a call.
- Events carry data only (no behavior).
- Every event carries the call id and a source timestamp (ms).
- The set of event kinds is closed: adding one here without adding a
  reducer branch fails at import time of conversation.reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from conversation.enums import Speaker


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event kinds understood by the reducer.

    Values are the wire names used by the event log.
    """

    # ------------------------------------------------------------------
    # Call lifecycle
    # ------------------------------------------------------------------
    CALL_STARTED = "call.started"
    CALL_ENDED = "call.ended"

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------
    TRANSCRIPT_FINALIZED = "transcript.finalized"
    TRANSCRIPT_RECEIVED = "transcript.received"
    SPEAKER_TURN_DETECTED = "speaker.turn_detected"
    SILENCE_DETECTED = "silence.detected"

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    AUDIO_CAPTURE_STARTED = "audio.capture.started"
    AUDIO_CAPTURE_STOPPED = "audio.capture.stopped"

    # ------------------------------------------------------------------
    # Live assistance
    # ------------------------------------------------------------------
    QUESTION_DETECTED = "question.detected"
    SUGGESTION_GENERATED = "suggestion.generated"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    - call_id: the call this event belongs to
    """

    event_type: EventType
    ts_ms: int
    call_id: str


# =============================================================================
# Call lifecycle
# =============================================================================

@dataclass(frozen=True)
class CallStarted(Event):
    """A call began. Produces the initial state."""
    workspace_id: str
    user_id: str | None = None


@dataclass(frozen=True)
class CallEnded(Event):
    """A call ended; duration is derived from ts_ms, not from the payload."""
    reason: str | None = None


# =============================================================================
# Transcript
# =============================================================================

@dataclass(frozen=True)
class TranscriptFinalized(Event):
    """A final transcript segment for one speaker."""
    utterance_id: str
    speaker: Speaker
    text: str
    started_at_ms: int
    ended_at_ms: int
    confidence: float


@dataclass(frozen=True)
class TranscriptReceived(Event):
    """An interim transcript update. Only touches bookkeeping."""
    text: str
    is_final: bool = False
    speaker: Speaker | None = None


@dataclass(frozen=True)
class SpeakerTurnDetected(Event):
    """A speaker took (or kept) the floor."""
    speaker: Speaker


@dataclass(frozen=True)
class SilenceDetected(Event):
    """A gap with no speech."""
    duration_ms: int


# =============================================================================
# Capture
# =============================================================================

@dataclass(frozen=True)
class AudioCaptureStarted(Event):
    """Audio capture began on the agent."""
    source: str | None = None


@dataclass(frozen=True)
class AudioCaptureStopped(Event):
    """Audio capture stopped on the agent."""
    source: str | None = None


# =============================================================================
# Live assistance
# =============================================================================

@dataclass(frozen=True)
class QuestionDetected(Event):
    """The prospect asked something the rep may need help with."""
    question: str
    confidence: float


@dataclass(frozen=True)
class SuggestionGenerated(Event):
    """A live suggestion was shown for a detected question."""
    question_id: str
    suggestion: str


ConversationEvent = Union[
    CallStarted,
    CallEnded,
    TranscriptFinalized,
    TranscriptReceived,
    SpeakerTurnDetected,
    SilenceDetected,
    AudioCaptureStarted,
    AudioCaptureStopped,
    QuestionDetected,
    SuggestionGenerated,
]

EVENT_CLASSES: dict[EventType, type[Event]] = {
    EventType.CALL_STARTED: CallStarted,
    EventType.CALL_ENDED: CallEnded,
    EventType.TRANSCRIPT_FINALIZED: TranscriptFinalized,
    EventType.TRANSCRIPT_RECEIVED: TranscriptReceived,
    EventType.SPEAKER_TURN_DETECTED: SpeakerTurnDetected,
    EventType.SILENCE_DETECTED: SilenceDetected,
    EventType.AUDIO_CAPTURE_STARTED: AudioCaptureStarted,
    EventType.AUDIO_CAPTURE_STOPPED: AudioCaptureStopped,
    EventType.QUESTION_DETECTED: QuestionDetected,
    EventType.SUGGESTION_GENERATED: SuggestionGenerated,
}


def event_to_record(event: Event) -> dict[str, object]:
    """Flatten an event into an event-log row payload."""
    payload = {
        key: value
        for key, value in vars(event).items()
        if key not in ("event_type", "ts_ms", "call_id")
    }
    return {
        "type": event.event_type.value,
        "call_id": event.call_id,
        "ts_ms": event.ts_ms,
        "payload": payload,
    }

"""
Conversation context serialization for model consumption.

Responsibilities:
- Project a ConversationState into a bounded ConversationContext.
- Filter utterances by confidence, THEN keep the most recent N.

Non-responsibilities:
- No prompt construction
- No logging
- No mutation of the state

Every utterance index cited as evidence downstream is an index into
ConversationContext.utterances, never into the unfiltered window.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from constants import MAX_CONTEXT_UTTERANCES, MIN_UTTERANCE_CONFIDENCE
from conversation.enums import Phase, Speaker
from conversation.state import (
    ConfidenceMetrics,
    ConversationState,
    DominanceMetrics,
    SpeakerMetrics,
    TimingMetrics,
)


@dataclass(frozen=True)
class CallInfo:
    call_id: str
    workspace_id: str
    started_at_ms: int
    last_event_at_ms: int
    phase: Phase


@dataclass(frozen=True)
class ContextUtterance:
    speaker: Speaker
    text: str
    started_at_ms: int
    ended_at_ms: int
    confidence: float


@dataclass(frozen=True)
class ContextMetrics:
    rep: SpeakerMetrics
    prospect: SpeakerMetrics
    timing: TimingMetrics
    dominance: DominanceMetrics
    confidence: ConfidenceMetrics


@dataclass(frozen=True)
class ConversationContext:
    """Bounded, model-safe view of one call."""
    call: CallInfo
    utterances: tuple[ContextUtterance, ...]
    metrics: ContextMetrics
    event_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def select_utterances(
    utterances: tuple[ContextUtterance, ...],
    *,
    min_confidence: float = MIN_UTTERANCE_CONFIDENCE,
    limit: int = MAX_CONTEXT_UTTERANCES,
) -> tuple[ContextUtterance, ...]:
    """Filter by confidence first, then keep the most recent `limit`."""
    kept = tuple(u for u in utterances if u.confidence >= min_confidence)
    if limit <= 0:
        return ()
    return kept[-limit:]


def serialize_for_ai(state: ConversationState) -> ConversationContext:
    """
    Project state into a ConversationContext.

    Deterministic and side-effect free: the same state always yields an
    equal context.
    """
    window = tuple(
        ContextUtterance(
            speaker=u.speaker,
            text=u.text,
            started_at_ms=u.started_at_ms,
            ended_at_ms=u.ended_at_ms,
            confidence=u.confidence,
        )
        for u in state.transcript_window.utterances
    )

    return ConversationContext(
        call=CallInfo(
            call_id=state.call_id,
            workspace_id=state.workspace_id,
            started_at_ms=state.started_at_ms,
            last_event_at_ms=state.last_event_at_ms,
            phase=state.phase,
        ),
        utterances=select_utterances(window),
        metrics=ContextMetrics(
            rep=state.rep_metrics,
            prospect=state.prospect_metrics,
            timing=state.timing,
            dominance=state.dominance,
            confidence=state.confidence,
        ),
        event_count=state.event_count,
    )

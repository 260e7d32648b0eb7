"""
Deterministic signal data model.

Signals here are produced ONLY by threshold and keyword rules; model-derived
signals live in ai.signals.types.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Union

from constants import SIGNALS_VERSION


class SignalType(str, Enum):
    REP_TALK_RATIO_LOW = "rep_talk_ratio_low"
    REP_TALK_RATIO_HIGH = "rep_talk_ratio_high"
    LONG_SILENCE = "long_silence"
    FREQUENT_SILENCE = "frequent_silence"
    LOW_TRANSCRIPT_CONFIDENCE = "low_transcript_confidence"
    TRANSCRIPT_SPARSE = "transcript_sparse"
    PROSPECT_RECENTLY_SPOKE = "prospect_recently_spoke"
    REP_RECENTLY_SPOKE = "rep_recently_spoke"
    MENTIONS_PRICING = "mentions_pricing"
    MENTIONS_COMPETITOR = "mentions_competitor"
    ASKS_FOR_INTEGRATION = "asks_for_integration"


@dataclass(frozen=True)
class MetricEvidence:
    """A named metric and the value that tripped the rule."""
    key: str
    value: float
    kind: str = "metric"


@dataclass(frozen=True)
class UtteranceEvidence:
    """An index into ConversationContext.utterances plus a display snippet."""
    index: int
    snippet: str
    kind: str = "utterance"


SignalEvidence = Union[MetricEvidence, UtteranceEvidence]


@dataclass(frozen=True)
class Signal:
    type: SignalType
    confidence: float
    created_at_ms: int
    evidence: tuple[SignalEvidence, ...]


@dataclass(frozen=True)
class SignalSet:
    call_id: str
    last_event_at_ms: int
    signals: tuple[Signal, ...]
    version: str = SIGNALS_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def empty(call_id: str, last_event_at_ms: int) -> SignalSet:
        return SignalSet(call_id=call_id, last_event_at_ms=last_event_at_ms, signals=())

"""Model-derived signal data model."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ai.grounding import Evidence, Outcome
from constants import AI_SIGNALS_VERSION


class AISignalType(str, Enum):
    """Declaration order is the tie-break order when confidences are equal."""

    OBJECTION_DETECTED = "objection_detected"
    INTENT_DETECTED = "intent_detected"
    TOPIC_DETECTED = "topic_detected"
    RISK_FLAG = "risk_flag"
    NEXT_QUESTION_CANDIDATE = "next_question_candidate"
    INFO_GAP = "info_gap"


AI_SIGNAL_TYPE_ORDER: dict[AISignalType, int] = {t: i for i, t in enumerate(AISignalType)}


@dataclass(frozen=True)
class AISignal:
    type: AISignalType
    label: str
    confidence: float
    evidence: Evidence


@dataclass(frozen=True)
class AISignalSet:
    call_id: str
    last_event_at_ms: int
    signals: tuple[AISignal, ...]
    model: str
    version: str = AI_SIGNALS_VERSION
    outcome: Outcome = Outcome.OK
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.outcome in (Outcome.FAILED, Outcome.INVALID_RESPONSE)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

"""Coaching recommendation data model."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from ai.grounding import Evidence, Outcome
from ai.signals.types import AISignalType
from constants import (
    PRIORITY_HIGH_MIN_CONFIDENCE,
    PRIORITY_MEDIUM_MIN_CONFIDENCE,
    RECOMMENDATIONS_VERSION,
)
from signals.types import SignalType


class RecommendationType(str, Enum):
    """Declaration order is the tie-break order when confidences are equal."""

    NEXT_BEST_RESPONSE = "next_best_response"
    DISCOVERY_QUESTION = "discovery_question"
    OBJECTION_HANDLING = "objection_handling"
    POSITIONING_POINT = "positioning_point"
    NEXT_STEP = "next_step"


RECOMMENDATION_TYPE_ORDER: dict[RecommendationType, int] = {
    t: i for i, t in enumerate(RecommendationType)
}


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def priority_for(confidence: float) -> Priority:
    """Display banding; not stored and not used for ordering."""
    if confidence >= PRIORITY_HIGH_MIN_CONFIDENCE:
        return Priority.HIGH
    if confidence >= PRIORITY_MEDIUM_MIN_CONFIDENCE:
        return Priority.MEDIUM
    return Priority.LOW


@dataclass(frozen=True)
class AISignalRef:
    type: AISignalType
    label: str


@dataclass(frozen=True)
class BasedOnSignals:
    deterministic: tuple[SignalType, ...] = ()
    ai: tuple[AISignalRef, ...] = ()


@dataclass(frozen=True)
class Recommendation:
    type: RecommendationType
    title: str
    script: str
    confidence: float
    evidence: Evidence
    based_on: BasedOnSignals = field(default_factory=BasedOnSignals)
    warnings: tuple[str, ...] = ()

    @property
    def priority(self) -> Priority:
        return priority_for(self.confidence)


@dataclass(frozen=True)
class RecommendationSet:
    call_id: str
    last_event_at_ms: int
    recommendations: tuple[Recommendation, ...]
    model: str
    version: str = RECOMMENDATIONS_VERSION
    outcome: Outcome = Outcome.OK
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.outcome in (Outcome.FAILED, Outcome.INVALID_RESPONSE)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

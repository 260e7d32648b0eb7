"""
Authoritative conversation state container.

Rules:
- These dataclasses are a pure data model.
- They contain ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from conversation.enums import Phase, Speaker
from constants import TRANSCRIPT_WINDOW_SIZE


# =============================================================================
# Transcript
# =============================================================================

@dataclass(frozen=True)
class Utterance:
    """Single finalized speech segment."""
    id: str
    speaker: Speaker
    text: str
    started_at_ms: int
    ended_at_ms: int
    duration_ms: int
    confidence: float


@dataclass(frozen=True)
class TranscriptWindow:
    """
    Bounded sliding window over the most recent utterances.

    total_utterance_count and window_start_index keep tracking the full
    history after older utterances are evicted.
    """
    utterances: tuple[Utterance, ...] = ()
    window_size: int = TRANSCRIPT_WINDOW_SIZE
    total_utterance_count: int = 0
    window_start_index: int = 0


# =============================================================================
# Metrics
# =============================================================================

@dataclass(frozen=True)
class SpeakerMetrics:
    utterance_count: int = 0
    total_speaking_time_ms: int = 0
    total_word_count: int = 0
    avg_utterance_duration_ms: float = 0.0


@dataclass(frozen=True)
class TimingMetrics:
    call_duration_ms: int = 0
    total_silence_ms: int = 0
    longest_silence_ms: int = 0
    avg_silence_ms: float = 0.0
    silence_count: int = 0


@dataclass(frozen=True)
class SpeakerStreak:
    """Consecutive turns by the same speaker. speaker is None before any turn."""
    speaker: Speaker | None = None
    count: int = 0


@dataclass(frozen=True)
class DominanceMetrics:
    rep_talk_ratio: float = 0.0
    prospect_talk_ratio: float = 0.0
    current_streak: SpeakerStreak = field(default_factory=SpeakerStreak)
    longest_streak: int = 0


@dataclass(frozen=True)
class ConfidenceMetrics:
    """
    Confidence aggregates over every finalized utterance.

    min starts at 1.0 and max at 0.0 so the first utterance sets both.
    """
    avg_confidence: float = 0.0
    min_confidence: float = 1.0
    max_confidence: float = 0.0
    low_confidence_count: int = 0
    high_confidence_count: int = 0
    high_confidence_ratio: float = 0.0


# =============================================================================
# Conversation State
# =============================================================================

@dataclass(frozen=True)
class ConversationState:
    """Immutable snapshot of everything known about one call."""

    call_id: str
    workspace_id: str
    started_at_ms: int
    last_event_at_ms: int

    transcript_window: TranscriptWindow = field(default_factory=TranscriptWindow)

    # ------------------------------------------------------------------
    # Per-speaker aggregates
    # ------------------------------------------------------------------
    rep_metrics: SpeakerMetrics = field(default_factory=SpeakerMetrics)
    prospect_metrics: SpeakerMetrics = field(default_factory=SpeakerMetrics)

    # ------------------------------------------------------------------
    # Call-level aggregates
    # ------------------------------------------------------------------
    timing: TimingMetrics = field(default_factory=TimingMetrics)
    dominance: DominanceMetrics = field(default_factory=DominanceMetrics)
    confidence: ConfidenceMetrics = field(default_factory=ConfidenceMetrics)

    phase: Phase = Phase.ACTIVE
    event_count: int = 0

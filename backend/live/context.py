"""
Lightweight context for the live path.

Built from the last few transcript records handed in by the caller, not from
the reducer's full state, so a live request costs O(M) regardless of call
length.

Differences from serialize_for_ai():
- Talk ratios are by word count (durations of interim segments are noisy).
- Silence metrics are zero (not observable from a slice).
- last_event_at is the request timestamp.
"""

from __future__ import annotations

from typing import Sequence

from constants import (
    HIGH_CONFIDENCE_THRESHOLD,
    LIVE_MAX_CONTEXT_UTTERANCES,
    LOW_CONFIDENCE_THRESHOLD,
)
from conversation.enums import Phase, Speaker
from conversation.serializer import (
    CallInfo,
    ContextMetrics,
    ContextUtterance,
    ConversationContext,
    select_utterances,
)
from conversation.state import (
    ConfidenceMetrics,
    DominanceMetrics,
    SpeakerMetrics,
    SpeakerStreak,
    TimingMetrics,
)
from conversation.transcript import TranscriptRecord


def _speaker_metrics(records: Sequence[TranscriptRecord]) -> SpeakerMetrics:
    if not records:
        return SpeakerMetrics()
    total_ms = sum(r.ended_at_ms - r.started_at_ms for r in records)
    return SpeakerMetrics(
        utterance_count=len(records),
        total_speaking_time_ms=total_ms,
        total_word_count=sum(r.word_count for r in records),
        avg_utterance_duration_ms=total_ms / len(records),
    )


def _confidence_metrics(records: Sequence[TranscriptRecord]) -> ConfidenceMetrics:
    if not records:
        return ConfidenceMetrics()
    values = [r.confidence for r in records]
    high = sum(1 for v in values if v >= HIGH_CONFIDENCE_THRESHOLD)
    return ConfidenceMetrics(
        avg_confidence=sum(values) / len(values),
        min_confidence=min(values),
        max_confidence=max(values),
        low_confidence_count=sum(1 for v in values if v < LOW_CONFIDENCE_THRESHOLD),
        high_confidence_count=high,
        high_confidence_ratio=high / len(values),
    )


def _dominance(
    records: Sequence[TranscriptRecord],
    rep: SpeakerMetrics,
    prospect: SpeakerMetrics,
) -> DominanceMetrics:
    total_words = rep.total_word_count + prospect.total_word_count
    if total_words:
        rep_ratio = rep.total_word_count / total_words
        prospect_ratio = prospect.total_word_count / total_words
    else:
        rep_ratio = prospect_ratio = 0.0

    current = SpeakerStreak()
    longest = 0
    for record in records:
        if current.speaker is record.speaker:
            current = SpeakerStreak(speaker=record.speaker, count=current.count + 1)
        else:
            current = SpeakerStreak(speaker=record.speaker, count=1)
        longest = max(longest, current.count)

    return DominanceMetrics(
        rep_talk_ratio=rep_ratio,
        prospect_talk_ratio=prospect_ratio,
        current_streak=current,
        longest_streak=longest,
    )


def build_live_context(
    *,
    call_id: str,
    workspace_id: str,
    recent: Sequence[TranscriptRecord],
    timestamp_ms: int,
    max_utterances: int = LIVE_MAX_CONTEXT_UTTERANCES,
) -> ConversationContext:
    """Project the most recent records into a ConversationContext."""
    window = list(recent)[-max_utterances:] if max_utterances > 0 else []

    rep = _speaker_metrics([r for r in window if r.speaker is Speaker.REP])
    prospect = _speaker_metrics([r for r in window if r.speaker is Speaker.PROSPECT])

    started_at = window[0].started_at_ms if window else timestamp_ms
    duration = window[-1].ended_at_ms - window[0].started_at_ms if window else 0

    utterances = tuple(
        ContextUtterance(
            speaker=r.speaker,
            text=r.text,
            started_at_ms=r.started_at_ms,
            ended_at_ms=r.ended_at_ms,
            confidence=r.confidence,
        )
        for r in window
    )

    return ConversationContext(
        call=CallInfo(
            call_id=call_id,
            workspace_id=workspace_id,
            started_at_ms=started_at,
            last_event_at_ms=timestamp_ms,
            phase=Phase.ACTIVE,
        ),
        utterances=select_utterances(utterances, limit=max_utterances),
        metrics=ContextMetrics(
            rep=rep,
            prospect=prospect,
            timing=TimingMetrics(call_duration_ms=max(0, duration)),
            dominance=_dominance(window, rep, prospect),
            confidence=_confidence_metrics(window),
        ),
        event_count=len(window),
    )

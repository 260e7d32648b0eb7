"""
Deterministic signal extractor.

ConversationContext -> SignalSet

Rules:
- Pure: no IO, no model calls, no clocks (created_at is the context's
  last event time).
- Threshold rules get two-tier confidences; keyword rules are flat.
- Output is sorted by confidence descending, ties broken by type name
  ascending, then capped. This ordering is part of the stored contract.
- Never catches: a failure here is a defect.
"""

from __future__ import annotations

from typing import Sequence

from constants import (
    COMPETITOR_KEYWORDS,
    FREQUENT_SILENCE_BASE_CONFIDENCE,
    FREQUENT_SILENCE_CONFIDENCE_STEP,
    FREQUENT_SILENCE_PER_MINUTE,
    INTEGRATION_KEYWORDS,
    KEYWORD_WINDOW_UTTERANCES,
    LONG_SILENCE_MS,
    LOW_AVG_CONFIDENCE,
    MAX_KEYWORD_MATCHES_PER_SIGNAL,
    MAX_SIGNALS,
    PRICING_KEYWORDS,
    SIGNAL_CONFIDENCE_DEFINITE,
    SIGNAL_CONFIDENCE_KEYWORD,
    SIGNAL_CONFIDENCE_MODERATE,
    SIGNAL_CONFIDENCE_STRONG,
    SIGNALS_VERSION,
    SNIPPET_MAX_CHARS,
    SPARSE_TRANSCRIPT_UTTERANCES,
    TALK_RATIO_REP_HIGH,
    TALK_RATIO_REP_LOW,
    TALK_RATIO_REP_VERY_HIGH,
    TALK_RATIO_REP_VERY_LOW,
)
from conversation.enums import Speaker
from conversation.serializer import ConversationContext
from signals.types import (
    MetricEvidence,
    Signal,
    SignalEvidence,
    SignalSet,
    SignalType,
    UtteranceEvidence,
)


_KEYWORD_RULES: tuple[tuple[SignalType, tuple[str, ...]], ...] = (
    (SignalType.MENTIONS_PRICING, PRICING_KEYWORDS),
    (SignalType.MENTIONS_COMPETITOR, COMPETITOR_KEYWORDS),
    (SignalType.ASKS_FOR_INTEGRATION, INTEGRATION_KEYWORDS),
)


def snippet(text: str, max_chars: int = SNIPPET_MAX_CHARS) -> str:
    """Truncate for display, marking the cut with '...'."""
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def matches_keywords(text: str, keywords: Sequence[str]) -> bool:
    lower = text.lower()
    return any(kw in lower for kw in keywords)


def sort_and_cap(signals: list[Signal], cap: int = MAX_SIGNALS) -> tuple[Signal, ...]:
    ordered = sorted(signals, key=lambda s: (-s.confidence, s.type.value))
    return tuple(ordered[:cap])


def extract_signals(ctx: ConversationContext) -> SignalSet:
    """Run every rule against the context and return the versioned set."""
    created_at = ctx.call.last_event_at_ms
    dominance = ctx.metrics.dominance
    timing = ctx.metrics.timing
    confidence = ctx.metrics.confidence
    utterances = ctx.utterances

    signals: list[Signal] = []

    def add(signal_type: SignalType, conf: float, evidence: Sequence[SignalEvidence]) -> None:
        signals.append(Signal(
            type=signal_type,
            confidence=conf,
            created_at_ms=created_at,
            evidence=tuple(evidence),
        ))

    # ------------------------------------------------------------------
    # Talk ratio
    # ------------------------------------------------------------------
    rep_ratio = dominance.rep_talk_ratio
    spoke = ctx.metrics.rep.utterance_count + ctx.metrics.prospect.utterance_count > 0

    if spoke and rep_ratio < TALK_RATIO_REP_LOW:
        conf = SIGNAL_CONFIDENCE_STRONG if rep_ratio < TALK_RATIO_REP_VERY_LOW else SIGNAL_CONFIDENCE_MODERATE
        add(SignalType.REP_TALK_RATIO_LOW, conf, [MetricEvidence("rep_talk_ratio", rep_ratio)])

    if rep_ratio > TALK_RATIO_REP_HIGH:
        conf = SIGNAL_CONFIDENCE_STRONG if rep_ratio > TALK_RATIO_REP_VERY_HIGH else SIGNAL_CONFIDENCE_MODERATE
        add(SignalType.REP_TALK_RATIO_HIGH, conf, [MetricEvidence("rep_talk_ratio", rep_ratio)])

    # ------------------------------------------------------------------
    # Silence
    # ------------------------------------------------------------------
    if timing.longest_silence_ms >= LONG_SILENCE_MS:
        add(
            SignalType.LONG_SILENCE,
            SIGNAL_CONFIDENCE_DEFINITE,
            [MetricEvidence("longest_silence_ms", timing.longest_silence_ms)],
        )

    call_minutes = max(1.0, timing.call_duration_ms / 60_000)
    silences_per_minute = timing.silence_count / call_minutes
    if silences_per_minute >= FREQUENT_SILENCE_PER_MINUTE:
        conf = min(
            SIGNAL_CONFIDENCE_DEFINITE,
            FREQUENT_SILENCE_BASE_CONFIDENCE
            + (silences_per_minute - FREQUENT_SILENCE_PER_MINUTE) * FREQUENT_SILENCE_CONFIDENCE_STEP,
        )
        add(
            SignalType.FREQUENT_SILENCE,
            conf,
            [MetricEvidence("silences_per_minute", silences_per_minute)],
        )

    # ------------------------------------------------------------------
    # Transcript quality
    # ------------------------------------------------------------------
    if spoke and confidence.avg_confidence < LOW_AVG_CONFIDENCE:
        add(
            SignalType.LOW_TRANSCRIPT_CONFIDENCE,
            SIGNAL_CONFIDENCE_DEFINITE,
            [MetricEvidence("avg_confidence", confidence.avg_confidence)],
        )

    if len(utterances) < SPARSE_TRANSCRIPT_UTTERANCES:
        add(
            SignalType.TRANSCRIPT_SPARSE,
            SIGNAL_CONFIDENCE_DEFINITE,
            [MetricEvidence("utterance_count_in_window", len(utterances))],
        )

    # ------------------------------------------------------------------
    # Who spoke last
    # ------------------------------------------------------------------
    if utterances:
        last_index = len(utterances) - 1
        last = utterances[last_index]
        signal_type = (
            SignalType.PROSPECT_RECENTLY_SPOKE
            if last.speaker is Speaker.PROSPECT
            else SignalType.REP_RECENTLY_SPOKE
        )
        add(signal_type, SIGNAL_CONFIDENCE_STRONG, [UtteranceEvidence(last_index, snippet(last.text))])

    # ------------------------------------------------------------------
    # Keywords over the most recent K utterances (indices stay global)
    # ------------------------------------------------------------------
    window_start = max(0, len(utterances) - KEYWORD_WINDOW_UTTERANCES)
    matches: dict[SignalType, list[UtteranceEvidence]] = {t: [] for t, _ in _KEYWORD_RULES}

    for index in range(window_start, len(utterances)):
        text = utterances[index].text
        for signal_type, keywords in _KEYWORD_RULES:
            found = matches[signal_type]
            if len(found) < MAX_KEYWORD_MATCHES_PER_SIGNAL and matches_keywords(text, keywords):
                found.append(UtteranceEvidence(index, snippet(text)))

    for signal_type, _ in _KEYWORD_RULES:
        if matches[signal_type]:
            add(signal_type, SIGNAL_CONFIDENCE_KEYWORD, matches[signal_type])

    return SignalSet(
        call_id=ctx.call.call_id,
        last_event_at_ms=created_at,
        signals=sort_and_cap(signals),
        version=SIGNALS_VERSION,
    )

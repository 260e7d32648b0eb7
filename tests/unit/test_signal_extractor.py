# pylint: disable=missing-module-docstring,missing-function-docstring
from dataclasses import replace

import pytest

from constants import MAX_SIGNALS, SIGNALS_VERSION
from conversation.enums import Phase, Speaker
from conversation.events import CallStarted, EventType, TranscriptFinalized
from conversation.reducer import reduce_all
from conversation.serializer import (
    CallInfo,
    ContextMetrics,
    ContextUtterance,
    ConversationContext,
    serialize_for_ai,
)
from conversation.state import (
    ConfidenceMetrics,
    DominanceMetrics,
    SpeakerMetrics,
    TimingMetrics,
)
from signals.extractor import extract_signals, snippet, sort_and_cap
from signals.types import MetricEvidence, Signal, SignalType, UtteranceEvidence


T0 = 1_700_000_000_000


# ---------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------

def utt(speaker: Speaker, text: str, confidence: float = 0.95) -> ContextUtterance:
    return ContextUtterance(
        speaker=speaker, text=text, started_at_ms=T0, ended_at_ms=T0 + 1000, confidence=confidence
    )


def context(
    utterances: tuple[ContextUtterance, ...] = (),
    *,
    rep_ratio: float = 0.5,
    rep_count: int = 1,
    prospect_count: int = 1,
    timing: TimingMetrics = TimingMetrics(call_duration_ms=60_000),
    avg_confidence: float = 0.95,
) -> ConversationContext:
    return ConversationContext(
        call=CallInfo(
            call_id="c", workspace_id="w", started_at_ms=T0, last_event_at_ms=T0 + 60_000,
            phase=Phase.ACTIVE,
        ),
        utterances=utterances,
        metrics=ContextMetrics(
            rep=SpeakerMetrics(utterance_count=rep_count),
            prospect=SpeakerMetrics(utterance_count=prospect_count),
            timing=timing,
            dominance=DominanceMetrics(rep_talk_ratio=rep_ratio, prospect_talk_ratio=1 - rep_ratio),
            confidence=ConfidenceMetrics(avg_confidence=avg_confidence),
        ),
        event_count=len(utterances) + 1,
    )


def types_of(ctx: ConversationContext) -> list[SignalType]:
    return [s.type for s in extract_signals(ctx).signals]


def by_type(ctx: ConversationContext, signal_type: SignalType) -> Signal:
    return next(s for s in extract_signals(ctx).signals if s.type is signal_type)


# ---------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------

def test_example_call_mentions_pricing_at_prospect_utterance() -> None:
    state = reduce_all([
        CallStarted(event_type=EventType.CALL_STARTED, ts_ms=T0, call_id="c", workspace_id="w"),
        TranscriptFinalized(
            event_type=EventType.TRANSCRIPT_FINALIZED, ts_ms=T0 + 5000, call_id="c",
            utterance_id="u0", speaker=Speaker.REP, text="Thanks for joining",
            started_at_ms=T0 + 1000, ended_at_ms=T0 + 5000, confidence=0.95,
        ),
        TranscriptFinalized(
            event_type=EventType.TRANSCRIPT_FINALIZED, ts_ms=T0 + 10000, call_id="c",
            utterance_id="u1", speaker=Speaker.PROSPECT, text="What's the price?",
            started_at_ms=T0 + 6000, ended_at_ms=T0 + 10000, confidence=0.92,
        ),
    ])
    assert state is not None

    result = extract_signals(serialize_for_ai(state))

    assert result.version == SIGNALS_VERSION
    pricing = next(s for s in result.signals if s.type is SignalType.MENTIONS_PRICING)
    assert pricing.evidence == (UtteranceEvidence(index=1, snippet="What's the price?"),)
    assert "price" in pricing.evidence[0].snippet
    assert [s.type for s in result.signals] == [
        SignalType.PROSPECT_RECENTLY_SPOKE,
        SignalType.TRANSCRIPT_SPARSE,
        SignalType.MENTIONS_PRICING,
    ]


# ---------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    ("ratio", "expected_type", "expected_conf"),
    [
        (0.10, SignalType.REP_TALK_RATIO_LOW, 0.95),
        (0.25, SignalType.REP_TALK_RATIO_LOW, 0.85),
        (0.80, SignalType.REP_TALK_RATIO_HIGH, 0.85),
        (0.90, SignalType.REP_TALK_RATIO_HIGH, 0.95),
    ],
)
def test_talk_ratio_two_tier_confidence(
    ratio: float, expected_type: SignalType, expected_conf: float
) -> None:
    signal = by_type(context(rep_ratio=ratio), expected_type)

    assert signal.confidence == expected_conf
    assert signal.evidence == (MetricEvidence("rep_talk_ratio", ratio),)


def test_no_talk_ratio_signal_before_anyone_speaks() -> None:
    ctx = context(rep_ratio=0.0, rep_count=0, prospect_count=0, avg_confidence=0.0)

    assert SignalType.REP_TALK_RATIO_LOW not in types_of(ctx)
    assert SignalType.LOW_TRANSCRIPT_CONFIDENCE not in types_of(ctx)


def test_long_and_frequent_silence() -> None:
    ctx = context(timing=TimingMetrics(
        call_duration_ms=60_000, longest_silence_ms=6_000, silence_count=7, total_silence_ms=12_000,
    ))

    assert by_type(ctx, SignalType.LONG_SILENCE).confidence == 0.9
    assert by_type(ctx, SignalType.FREQUENT_SILENCE).confidence == pytest.approx(0.84)


def test_low_transcript_confidence() -> None:
    assert SignalType.LOW_TRANSCRIPT_CONFIDENCE in types_of(context(avg_confidence=0.6))
    assert SignalType.LOW_TRANSCRIPT_CONFIDENCE not in types_of(context(avg_confidence=0.8))


def test_last_speaker_signal_points_at_last_utterance() -> None:
    ctx = context((utt(Speaker.PROSPECT, "hi"), utt(Speaker.REP, "hello there")))

    signal = by_type(ctx, SignalType.REP_RECENTLY_SPOKE)
    assert signal.evidence == (UtteranceEvidence(1, "hello there"),)
    assert SignalType.PROSPECT_RECENTLY_SPOKE not in types_of(ctx)


def test_keyword_rules_use_global_indices_and_cap_matches() -> None:
    filler = tuple(utt(Speaker.REP, f"filler {i}") for i in range(3))
    mentions = tuple(utt(Speaker.PROSPECT, f"what does the pricing look like {i}") for i in range(5))
    ctx = context(filler + mentions + (utt(Speaker.PROSPECT, "We use Salesforce today"),))

    pricing = by_type(ctx, SignalType.MENTIONS_PRICING)
    competitor = by_type(ctx, SignalType.MENTIONS_COMPETITOR)

    assert [e.index for e in pricing.evidence] == [3, 4, 5]
    assert pricing.confidence == 0.5
    assert [e.index for e in competitor.evidence] == [8]


def test_keywords_only_scan_recent_window() -> None:
    old = (utt(Speaker.PROSPECT, "we need a webhook"),)
    recent = tuple(utt(Speaker.REP, f"ok {i}") for i in range(10))

    assert SignalType.ASKS_FOR_INTEGRATION not in types_of(context(old + recent))


def test_snippet_truncation() -> None:
    assert snippet("short") == "short"
    long = snippet("x" * 200)
    assert len(long) == 120
    assert long.endswith("...")


# ---------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------

def test_sort_by_confidence_then_type_name_and_cap() -> None:
    signals = [
        Signal(type=t, confidence=0.5, created_at_ms=0, evidence=())
        for t in reversed(list(SignalType))
    ]
    signals.append(Signal(type=SignalType.TRANSCRIPT_SPARSE, confidence=0.99, created_at_ms=0, evidence=()))

    ordered = sort_and_cap(signals)

    assert len(ordered) == MAX_SIGNALS
    assert ordered[0].type is SignalType.TRANSCRIPT_SPARSE
    rest = [s.type.value for s in ordered[1:]]
    assert rest == sorted(rest)


def test_extraction_is_pure() -> None:
    ctx = context(
        (utt(Speaker.PROSPECT, "How does the api integration work?"),),
        rep_ratio=0.1,
        avg_confidence=0.5,
    )

    first = extract_signals(ctx)
    assert first == extract_signals(replace(ctx))
    assert len(first.signals) <= MAX_SIGNALS
    confidences = [s.confidence for s in first.signals]
    assert confidences == sorted(confidences, reverse=True)

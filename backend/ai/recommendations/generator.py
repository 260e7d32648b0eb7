"""
Coaching recommendation generation.

(ConversationContext, SignalSet, AISignalSet) -> RecommendationSet

Pipeline:
1. Build prompt (optionally with knowledge snippets), ask for one JSON object.
2. validate_recommendations(): total function over the untrusted value.
3. Sort (confidence desc, type order, title), cap.

A recommendation without grounded evidence never reaches the output set.
Any failure degrades to an empty, versioned RecommendationSet with an
explicit outcome. This module never raises to its caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

from adapters.llm.base import JsonCompletionClient
from adapters.retrieval.base import KnowledgeSnippet
from ai.grounding import (
    Outcome,
    clean_text,
    first_key,
    ground_evidence,
    parse_confidence,
    parse_enum,
    top_level_list,
)
from ai.recommendations.prompt import build_recommendations_prompt
from ai.recommendations.types import (
    RECOMMENDATION_TYPE_ORDER,
    AISignalRef,
    BasedOnSignals,
    Recommendation,
    RecommendationSet,
    RecommendationType,
)
from ai.signals.types import AISignalSet, AISignalType
from constants import (
    DEFAULT_RECOMMENDATION_CONFIDENCE,
    MAX_LABEL_CHARS,
    MAX_RECOMMENDATIONS,
    MAX_SCRIPT_CHARS,
    MAX_TITLE_CHARS,
    MAX_WARNING_CHARS,
    MAX_WARNINGS,
    NO_MODEL,
    RECOMMENDATIONS_MAX_OUTPUT_TOKENS,
    RECOMMENDATIONS_VERSION,
)
from conversation.serializer import ContextUtterance, ConversationContext
from observability.logger import log_event
from resilience.policy import RetryPolicy
from resilience.runner import with_retry
from signals.types import SignalSet, SignalType


# =============================================================================
# Validation (pure, total)
# =============================================================================

def _based_on(raw: Any) -> BasedOnSignals:
    if not isinstance(raw, dict):
        return BasedOnSignals()

    deterministic: list[SignalType] = []
    raw_det = raw.get("deterministic")
    if isinstance(raw_det, list):
        for item in raw_det:
            signal_type = parse_enum(item, SignalType)
            if signal_type is not None and signal_type not in deterministic:
                deterministic.append(signal_type)

    ai: list[AISignalRef] = []
    raw_ai = raw.get("ai")
    if isinstance(raw_ai, list):
        for item in raw_ai:
            if not isinstance(item, dict):
                continue
            signal_type = parse_enum(item.get("type"), AISignalType)
            label = clean_text(item.get("label"), MAX_LABEL_CHARS)
            if signal_type is not None and label is not None:
                ai.append(AISignalRef(type=signal_type, label=label))

    return BasedOnSignals(deterministic=tuple(deterministic), ai=tuple(ai))


def _warnings(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    cleaned = (clean_text(w, MAX_WARNING_CHARS) for w in raw)
    return tuple(w for w in cleaned if w is not None)[:MAX_WARNINGS]


def validate_recommendation(
    raw: Any,
    utterances: Sequence[ContextUtterance],
) -> Recommendation | None:
    if not isinstance(raw, dict):
        return None

    rec_type = parse_enum(raw.get("type"), RecommendationType)
    if rec_type is None:
        return None

    title = clean_text(raw.get("title"), MAX_TITLE_CHARS)
    script = clean_text(raw.get("script"), MAX_SCRIPT_CHARS)
    if title is None or script is None:
        return None

    confidence = parse_confidence(raw.get("confidence"))
    if confidence is None:
        confidence = DEFAULT_RECOMMENDATION_CONFIDENCE

    evidence = ground_evidence(raw.get("evidence"), utterances)
    if evidence is None:
        return None

    return Recommendation(
        type=rec_type,
        title=title,
        script=script,
        confidence=confidence,
        evidence=evidence,
        based_on=_based_on(first_key(raw, "based_on_signals", "basedOnSignals")),
        warnings=_warnings(raw.get("warnings")),
    )


def rank_recommendations(recs: Sequence[Recommendation]) -> tuple[Recommendation, ...]:
    ordered = sorted(
        recs,
        key=lambda r: (-r.confidence, RECOMMENDATION_TYPE_ORDER[r.type], r.title),
    )
    return tuple(ordered[:MAX_RECOMMENDATIONS])


def validate_recommendations(
    raw: Any,
    ctx: ConversationContext,
) -> tuple[Recommendation, ...] | None:
    """
    Validate a raw model response.

    Returns None when the top-level shape is wrong, otherwise the grounded,
    ranked and capped recommendations (possibly empty).
    """
    entries = top_level_list(raw, "recommendations")
    if entries is None:
        return None

    valid = [
        rec
        for rec in (validate_recommendation(entry, ctx.utterances) for entry in entries)
        if rec is not None
    ]
    return rank_recommendations(valid)


# =============================================================================
# Generation (async, never raises)
# =============================================================================

def empty_recommendations(
    ctx: ConversationContext,
    model: str,
    outcome: Outcome,
    error: str | None = None,
) -> RecommendationSet:
    return RecommendationSet(
        call_id=ctx.call.call_id,
        last_event_at_ms=ctx.call.last_event_at_ms,
        recommendations=(),
        model=model,
        version=RECOMMENDATIONS_VERSION,
        outcome=outcome,
        error=error,
    )


async def generate_recommendations(
    ctx: ConversationContext,
    signals: SignalSet,
    ai_signals: AISignalSet,
    *,
    llm: JsonCompletionClient | None,
    model: str,
    knowledge: Sequence[KnowledgeSnippet] = (),
    question: str | None = None,
    max_output_tokens: int = RECOMMENDATIONS_MAX_OUTPUT_TOKENS,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RecommendationSet:
    """Generate grounded recommendations. Never raises."""
    if llm is None:
        return empty_recommendations(ctx, NO_MODEL, Outcome.SKIPPED)
    if not ctx.utterances:
        return empty_recommendations(ctx, model, Outcome.SKIPPED)

    try:
        system, user = build_recommendations_prompt(
            ctx, signals, ai_signals, knowledge=knowledge, question=question
        )

        async def _call() -> object:
            return await llm.complete_json(
                system=system,
                user=user,
                model=model,
                max_output_tokens=max_output_tokens,
            )

        if retry_policy is None:
            raw = await _call()
        else:
            raw = await with_retry(
                _call,
                policy=retry_policy,
                name="recommendations",
                call_id=ctx.call.call_id,
                sleep=sleep,
            )
        recommendations = validate_recommendations(raw, ctx)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        log_event({
            "event_type": "RECOMMENDATIONS_DEGRADED",
            "call_id": ctx.call.call_id,
            "model": model,
            "error_type": type(exc).__name__,
            "error": str(exc),
        })
        return empty_recommendations(ctx, model, Outcome.FAILED, str(exc))

    if recommendations is None:
        log_event({
            "event_type": "RECOMMENDATIONS_DEGRADED",
            "call_id": ctx.call.call_id,
            "model": model,
            "error": "response is not an object with a recommendations array",
        })
        return empty_recommendations(ctx, model, Outcome.INVALID_RESPONSE, "invalid response shape")

    return RecommendationSet(
        call_id=ctx.call.call_id,
        last_event_at_ms=ctx.call.last_event_at_ms,
        recommendations=recommendations,
        model=model,
        version=RECOMMENDATIONS_VERSION,
        outcome=Outcome.OK,
    )

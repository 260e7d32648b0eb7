"""
Model-derived signal classification.

ConversationContext -> AISignalSet

Pipeline:
1. Build prompt, ask the model for one JSON object.
2. validate_ai_signals(): total function over the untrusted value.
3. Sort (confidence desc, type order, label), cap.

Any failure (network, provider, malformed JSON, unexpected shape) degrades
to an empty, correctly versioned AISignalSet with an explicit outcome.
This module never raises to its caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

from adapters.llm.base import JsonCompletionClient
from ai.grounding import (
    Outcome,
    clean_text,
    ground_evidence,
    parse_confidence,
    parse_enum,
    top_level_list,
)
from ai.signals.prompt import build_ai_signals_prompt
from ai.signals.types import AI_SIGNAL_TYPE_ORDER, AISignal, AISignalSet, AISignalType
from constants import (
    AI_SIGNALS_MAX_OUTPUT_TOKENS,
    AI_SIGNALS_VERSION,
    MAX_AI_SIGNALS,
    MAX_LABEL_CHARS,
    NO_MODEL,
)
from conversation.serializer import ContextUtterance, ConversationContext
from observability.logger import log_event
from resilience.policy import RetryPolicy
from resilience.runner import with_retry


# =============================================================================
# Validation (pure, total)
# =============================================================================

def validate_ai_signal(raw: Any, utterances: Sequence[ContextUtterance]) -> AISignal | None:
    if not isinstance(raw, dict):
        return None

    signal_type = parse_enum(raw.get("type"), AISignalType)
    if signal_type is None:
        return None

    label = clean_text(raw.get("label"), MAX_LABEL_CHARS)
    if label is None:
        return None

    confidence = parse_confidence(raw.get("confidence"))
    if confidence is None:
        return None

    evidence = ground_evidence(raw.get("evidence"), utterances)
    if evidence is None:
        return None

    return AISignal(type=signal_type, label=label, confidence=confidence, evidence=evidence)


def rank_ai_signals(signals: Sequence[AISignal]) -> tuple[AISignal, ...]:
    ordered = sorted(
        signals,
        key=lambda s: (-s.confidence, AI_SIGNAL_TYPE_ORDER[s.type], s.label),
    )
    return tuple(ordered[:MAX_AI_SIGNALS])


def validate_ai_signals(raw: Any, ctx: ConversationContext) -> tuple[AISignal, ...] | None:
    """
    Validate a raw model response.

    Returns None when the top-level shape is wrong, otherwise the grounded,
    ranked and capped signals (possibly empty).
    """
    entries = top_level_list(raw, "signals")
    if entries is None:
        return None

    valid = [
        signal
        for signal in (validate_ai_signal(entry, ctx.utterances) for entry in entries)
        if signal is not None
    ]
    return rank_ai_signals(valid)


# =============================================================================
# Classification (async, never raises)
# =============================================================================

def _empty(ctx: ConversationContext, model: str, outcome: Outcome, error: str | None = None) -> AISignalSet:
    return AISignalSet(
        call_id=ctx.call.call_id,
        last_event_at_ms=ctx.call.last_event_at_ms,
        signals=(),
        model=model,
        version=AI_SIGNALS_VERSION,
        outcome=outcome,
        error=error,
    )


async def classify_ai_signals(
    ctx: ConversationContext,
    *,
    llm: JsonCompletionClient | None,
    model: str,
    max_output_tokens: int = AI_SIGNALS_MAX_OUTPUT_TOKENS,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AISignalSet:
    """Classify the context into an AISignalSet. Never raises."""
    if llm is None:
        return _empty(ctx, NO_MODEL, Outcome.SKIPPED)
    if not ctx.utterances:
        return _empty(ctx, model, Outcome.SKIPPED)

    try:
        system, user = build_ai_signals_prompt(ctx)

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
                name="ai_signals",
                call_id=ctx.call.call_id,
                sleep=sleep,
            )
        signals = validate_ai_signals(raw, ctx)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        log_event({
            "event_type": "AI_SIGNALS_DEGRADED",
            "call_id": ctx.call.call_id,
            "model": model,
            "error_type": type(exc).__name__,
            "error": str(exc),
        })
        return _empty(ctx, model, Outcome.FAILED, str(exc))

    if signals is None:
        log_event({
            "event_type": "AI_SIGNALS_DEGRADED",
            "call_id": ctx.call.call_id,
            "model": model,
            "error": "response is not an object with a signals array",
        })
        return _empty(ctx, model, Outcome.INVALID_RESPONSE, "invalid response shape")

    return AISignalSet(
        call_id=ctx.call.call_id,
        last_event_at_ms=ctx.call.last_event_at_ms,
        signals=signals,
        model=model,
        version=AI_SIGNALS_VERSION,
        outcome=Outcome.OK,
    )

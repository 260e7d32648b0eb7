"""
Structured post-call summary.

The model is asked for {title, bullets, full_text}; output is validated the
same way as every other model response (untrusted, total validation) and
falls back to a default summary instead of raising.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Sequence

from adapters.llm.base import JsonCompletionClient
from ai.grounding import clean_text
from ai.recommendations.types import RecommendationSet
from ai.signals.types import AISignalSet
from constants import (
    MAX_BULLET_CHARS,
    MAX_SUMMARY_BULLETS,
    MAX_SUMMARY_TEXT_CHARS,
    MAX_SUMMARY_TITLE_CHARS,
    NO_MODEL,
    SUMMARY_MAX_OUTPUT_TOKENS,
    SUMMARY_TEMPERATURE,
    SUMMARY_VERSION,
)
from conversation.transcript import TranscriptRecord
from observability.logger import log_event
from resilience.policy import RetryPolicy
from resilience.runner import with_retry
from signals.types import SignalSet

DEFAULT_TITLE = "Call Summary"

SYSTEM_PROMPT = (
    "You summarize sales calls. Respond with ONLY a JSON object, no markdown:\n"
    '{"title": "<short descriptive title, max 8 words>", '
    '"bullets": ["<key point>", "..."], '
    '"full_text": "<2-3 sentence summary>"}'
)


@dataclass(frozen=True)
class CallSummary:
    title: str
    bullets: tuple[str, ...]
    full_text: str
    model: str
    version: str = SUMMARY_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_summary(model: str, full_text: str) -> CallSummary:
    return CallSummary(title=DEFAULT_TITLE, bullets=(), full_text=full_text, model=model)


def validate_summary(raw: Any, model: str) -> CallSummary | None:
    if not isinstance(raw, dict):
        return None

    full_text = clean_text(raw.get("full_text", raw.get("fullText")), MAX_SUMMARY_TEXT_CHARS)
    if full_text is None:
        return None

    bullets: list[str] = []
    raw_bullets = raw.get("bullets")
    if isinstance(raw_bullets, list):
        for item in raw_bullets:
            bullet = clean_text(item, MAX_BULLET_CHARS)
            if bullet is not None:
                bullets.append(bullet)

    return CallSummary(
        title=clean_text(raw.get("title"), MAX_SUMMARY_TITLE_CHARS) or DEFAULT_TITLE,
        bullets=tuple(bullets[:MAX_SUMMARY_BULLETS]),
        full_text=full_text,
        model=model,
    )


def build_summary_prompt(
    transcript: Sequence[TranscriptRecord],
    signals: SignalSet,
    ai_signals: AISignalSet,
    recommendations: RecommendationSet,
) -> str:
    lines = "\n".join(f"[{r.speaker.value.upper()}]: {r.text}" for r in transcript)
    detected = [s.type.value for s in signals.signals]
    detected += [f"{s.type.value}: {s.label}" for s in ai_signals.signals]
    titles = [r.title for r in recommendations.recommendations]
    return (
        f"TRANSCRIPT:\n{lines}\n\n"
        f"DETECTED SIGNALS: {', '.join(detected) or 'None'}\n\n"
        f"TOP RECOMMENDATIONS: {', '.join(titles) or 'None'}"
    )


async def generate_summary(
    transcript: Sequence[TranscriptRecord],
    signals: SignalSet,
    ai_signals: AISignalSet,
    recommendations: RecommendationSet,
    *,
    llm: JsonCompletionClient | None,
    model: str,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CallSummary:
    """Summarize the call. Never raises."""
    if llm is None:
        return default_summary(NO_MODEL, "Summary unavailable: language model not configured")
    if not transcript:
        return default_summary(model, "No speech was transcribed on this call.")

    user = build_summary_prompt(transcript, signals, ai_signals, recommendations)

    async def _call() -> CallSummary:
        raw = await llm.complete_json(
            system=SYSTEM_PROMPT,
            user=user,
            model=model,
            max_output_tokens=SUMMARY_MAX_OUTPUT_TOKENS,
            temperature=SUMMARY_TEMPERATURE,
        )
        summary = validate_summary(raw, model)
        if summary is None:
            raise ValueError("invalid summary response shape")
        return summary

    try:
        if retry_policy is None:
            return await _call()
        return await with_retry(
            _call,
            policy=retry_policy,
            name="summary",
            call_id=recommendations.call_id,
            sleep=sleep,
        )
    except Exception as exc:  # pylint: disable=broad-exception-caught
        log_event({
            "event_type": "SUMMARY_DEGRADED",
            "call_id": recommendations.call_id,
            "model": model,
            "error_type": type(exc).__name__,
            "error": str(exc),
        })
        return default_summary(model, "Summary generation failed")

"""
Prompt text for recommendation generation.

Inputs: the context, both signal sets, and (live path only) a few retrieved
knowledge snippets. Output is validated by ai.recommendations.generator.
"""

from __future__ import annotations

import json
from typing import Sequence

from adapters.retrieval.base import KnowledgeSnippet
from ai.signals.types import AISignalSet
from constants import MAX_QUOTE_CHARS, MAX_RECOMMENDATIONS, MAX_SCRIPT_CHARS, MAX_TITLE_CHARS
from conversation.serializer import ConversationContext
from signals.types import SignalSet

SYSTEM_PROMPT = f"""You are a sales coach AI. Output ONLY valid JSON matching the schema below. No markdown, no explanations, no content outside JSON.

OUTPUT FORMAT (exactly this structure):
{{
  "recommendations": [
    {{
      "type": "next_best_response" | "discovery_question" | "objection_handling" | "positioning_point" | "next_step",
      "title": string (max {MAX_TITLE_CHARS} chars),
      "script": string (max {MAX_SCRIPT_CHARS} chars),
      "confidence": number (0 to 1),
      "evidence": {{
        "utterance_indices": number[],
        "quotes": string[] (each max {MAX_QUOTE_CHARS} chars, exact substrings of the utterances at the cited indices)
      }},
      "based_on_signals": {{
        "deterministic": string[],
        "ai": [{{ "type": string, "label": string }}]
      }},
      "warnings": string[]
    }}
  ]
}}

RULES:
1. Output ONLY a JSON object with a "recommendations" array (maximum {MAX_RECOMMENDATIONS}).
2. Each recommendation MUST cite evidence with utterance_indices and exact quotes from those specific utterances.
3. If evidence is weak or transcript confidence is low, reduce confidence and add warnings.
4. Do NOT invent product facts. Use the knowledge base only when it is provided.
5. Keep scripts short and speakable.
6. If no grounded recommendation can be made, output: {{ "recommendations": [] }}"""


def _dump(value: object) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def build_recommendations_prompt(
    ctx: ConversationContext,
    signals: SignalSet,
    ai_signals: AISignalSet,
    *,
    knowledge: Sequence[KnowledgeSnippet] = (),
    question: str | None = None,
) -> tuple[str, str]:
    """Return (system, user) prompts for one generation call."""
    utterances = [
        {"index": i, "speaker": u.speaker.value, "text": u.text, "confidence": u.confidence}
        for i, u in enumerate(ctx.utterances)
    ]
    deterministic = [
        {"type": s.type.value, "confidence": s.confidence} for s in signals.signals
    ]
    ai = [
        {
            "type": s.type.value,
            "label": s.label,
            "confidence": s.confidence,
            "utterance_indices": list(s.evidence.utterance_indices),
        }
        for s in ai_signals.signals
    ]
    metrics = {
        "rep_talk_ratio": ctx.metrics.dominance.rep_talk_ratio,
        "prospect_talk_ratio": ctx.metrics.dominance.prospect_talk_ratio,
        "avg_confidence": ctx.metrics.confidence.avg_confidence,
        "call_duration_ms": ctx.metrics.timing.call_duration_ms,
    }

    sections = [
        f"TRANSCRIPT (utterances with indices):\n{_dump(utterances)}",
        f"DETERMINISTIC SIGNALS:\n{_dump(deterministic)}",
        f"AI SIGNALS:\n{_dump(ai)}",
        f"METRICS:\n{_dump(metrics)}",
    ]
    if knowledge:
        kb = "\n\n".join(f"[{k.document_id}] {k.content}" for k in knowledge)
        sections.append(f"KNOWLEDGE BASE:\n{kb}")
    if question:
        sections.append(f"PROSPECT QUESTION TO ANSWER:\n{question}")

    sections.append(
        f"Generate up to {MAX_RECOMMENDATIONS} actionable recommendations for the sales rep. "
        "Each must be grounded in the transcript with exact quotes from the cited utterance "
        'indices. Output ONLY the JSON object with the "recommendations" array.'
    )
    return SYSTEM_PROMPT, "\n\n".join(sections)

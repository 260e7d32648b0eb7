"""
Prompt text for model-derived signal classification.

The model is asked for evidence as indices into the context utterances plus
verbatim quotes; whatever comes back is validated by ai.signals.classifier.
"""

from __future__ import annotations

from constants import MAX_AI_SIGNALS, MAX_LABEL_CHARS, MAX_QUOTE_CHARS
from conversation.serializer import ConversationContext

SYSTEM_PROMPT = f"""You are a sales call analyzer. Your ONLY job is to identify signals in a conversation transcript.

OUTPUT FORMAT:
Respond with ONLY valid JSON matching this exact schema:
{{
  "signals": [
    {{
      "type": "<one of: objection_detected | intent_detected | topic_detected | risk_flag | next_question_candidate | info_gap>",
      "label": "<short descriptive label, max {MAX_LABEL_CHARS} chars>",
      "confidence": <number 0.0 to 1.0>,
      "evidence": {{
        "utterance_indices": [<indices into the transcript array>],
        "quotes": ["<exact quote from the cited utterances, max {MAX_QUOTE_CHARS} chars each>"]
      }}
    }}
  ]
}}

STRICT RULES:
1. Output ONLY JSON. No explanations, no markdown, no commentary.
2. Do NOT generate recommendations, pitches, or next-best-action text.
3. Each signal MUST cite evidence with utterance indices and exact quotes.
4. Every quote MUST appear verbatim in one of the utterances it cites.
5. Keep confidence conservative. Only use 0.8+ for very clear signals.
6. Maximum {MAX_AI_SIGNALS} signals. Prioritize highest confidence.
7. Use ONLY the allowed signal types listed above.

SIGNAL TYPE DEFINITIONS:
- objection_detected: Prospect raised concern, hesitation, or pushback
- intent_detected: Prospect expressed interest, buying signal, or next step intent
- topic_detected: A specific topic emerged (pricing, timeline, features, etc)
- risk_flag: Something concerning for deal health (competitor mention, budget issue, etc)
- next_question_candidate: Prospect asked or implied a question that may need response
- info_gap: Missing information that would help the conversation"""


def transcript_lines(ctx: ConversationContext) -> str:
    return "\n".join(
        f'[{i}] {u.speaker.value.upper()}: "{u.text}"'
        for i, u in enumerate(ctx.utterances)
    )


def build_ai_signals_prompt(ctx: ConversationContext) -> tuple[str, str]:
    """Return (system, user) prompts for one classification call."""
    duration_s = round(ctx.metrics.timing.call_duration_ms / 1000)
    rep_ratio_pct = ctx.metrics.dominance.rep_talk_ratio * 100

    user = (
        "Analyze this sales call transcript and identify signals.\n\n"
        "CALL METADATA:\n"
        f"- Call: {ctx.call.call_id}\n"
        f"- Duration: {duration_s}s\n"
        f"- Rep talk ratio: {rep_ratio_pct:.1f}%\n\n"
        f"TRANSCRIPT ({len(ctx.utterances)} utterances):\n"
        f"{transcript_lines(ctx) or '(no utterances)'}\n\n"
        "Return ONLY the JSON object as specified."
    )
    return SYSTEM_PROMPT, user

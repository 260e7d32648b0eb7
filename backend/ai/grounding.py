"""
Grounding and validation of untrusted model output.

Every helper here is a total function over arbitrary JSON values: it
returns a well-formed domain value or None, and never raises.

Grounding rules:
- Utterance indices must be ints within [0, len(utterances)); invalid ones
  are dropped, the rest are deduplicated and sorted ascending.
- Quotes are stripped and truncated, then must be a case-insensitive
  substring of the text of an utterance at one of the CITED indices.
- Evidence with zero surviving indices or zero surviving quotes is None.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from constants import MAX_QUOTE_CHARS
from conversation.serializer import ContextUtterance


class Outcome(str, Enum):
    """
    How a model-backed step ended.

    OK:
        The model answered and its output was validated (possibly to
        an empty set because nothing survived grounding).

    SKIPPED:
        Nothing to ask (no utterances) or no model configured.

    INVALID_RESPONSE:
        The model answered with something that is not the expected object.

    FAILED:
        The call itself failed (network, provider, malformed JSON).
    """

    OK = "ok"
    SKIPPED = "skipped"
    INVALID_RESPONSE = "invalid_response"
    FAILED = "failed"


@dataclass(frozen=True)
class Evidence:
    """Grounded evidence: indices into the context and verbatim quotes."""
    utterance_indices: tuple[int, ...]
    quotes: tuple[str, ...]


# =============================================================================
# Scalars
# =============================================================================

def truncate(text: str, max_chars: int) -> str:
    """Hard cut without an ellipsis, so a truncated quote stays a substring."""
    return text[:max_chars]


def clean_text(value: Any, max_chars: int) -> str | None:
    """Non-empty stripped string truncated to max_chars, else None."""
    if not isinstance(value, str):
        return None
    text = truncate(value.strip(), max_chars).strip()
    return text or None


def parse_confidence(value: Any) -> float | None:
    """Finite number clamped into [0, 1], else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return min(1.0, max(0.0, float(value)))


def first_key(raw: Mapping[str, Any], *keys: str) -> Any:
    """Value of the first present key; accepts snake_case and camelCase."""
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def parse_enum(value: Any, enum_type: type[Enum]) -> Any:
    if not isinstance(value, str):
        return None
    try:
        return enum_type(value)
    except ValueError:
        return None


def top_level_list(raw: Any, key: str) -> list[Any] | None:
    """The list under `key` in a JSON object, else None."""
    if not isinstance(raw, dict):
        return None
    entries = raw.get(key)
    if not isinstance(entries, list):
        return None
    return entries


# =============================================================================
# Evidence
# =============================================================================

def valid_indices(raw: Any, utterance_count: int) -> tuple[int, ...]:
    if not isinstance(raw, list):
        return ()
    kept = {
        i for i in raw
        if isinstance(i, int) and not isinstance(i, bool) and 0 <= i < utterance_count
    }
    return tuple(sorted(kept))


def quote_matches(quote: str, indices: Sequence[int], utterances: Sequence[ContextUtterance]) -> bool:
    needle = quote.lower()
    return any(needle in utterances[i].text.lower() for i in indices)


def ground_evidence(raw: Any, utterances: Sequence[ContextUtterance]) -> Evidence | None:
    """Validate a raw evidence object against the context utterances."""
    if not isinstance(raw, dict):
        return None

    indices = valid_indices(
        first_key(raw, "utterance_indices", "utteranceIndices"),
        len(utterances),
    )
    if not indices:
        return None

    raw_quotes = raw.get("quotes")
    if not isinstance(raw_quotes, list):
        return None

    quotes: list[str] = []
    for raw_quote in raw_quotes:
        quote = clean_text(raw_quote, MAX_QUOTE_CHARS)
        if quote is None or quote in quotes:
            continue
        if quote_matches(quote, indices, utterances):
            quotes.append(quote)

    if not quotes:
        return None

    return Evidence(utterance_indices=indices, quotes=tuple(quotes))


def is_grounded(evidence: Evidence, utterances: Sequence[ContextUtterance]) -> bool:
    """Check an Evidence value still holds against a list of utterances."""
    if not evidence.utterance_indices or not evidence.quotes:
        return False
    if any(not 0 <= i < len(utterances) for i in evidence.utterance_indices):
        return False
    return all(
        quote_matches(q, evidence.utterance_indices, utterances) for q in evidence.quotes
    )

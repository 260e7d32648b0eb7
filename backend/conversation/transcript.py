"""Transcript records exchanged between the transcription adapter, the batch
pipeline and the live path."""

from __future__ import annotations

from dataclasses import dataclass

from conversation.enums import Speaker


@dataclass(frozen=True)
class TranscriptRecord:
    """
    One transcribed segment with absolute timestamps (epoch ms).

    The live path receives these from the transcription relay; the batch
    pipeline builds them from provider segments offset by the call start.
    """
    speaker: Speaker
    text: str
    started_at_ms: int
    ended_at_ms: int
    confidence: float
    utterance_id: str | None = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())

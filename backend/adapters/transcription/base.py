"""
Pre-recorded transcription contract.

The batch pipeline hands the adapter one stereo audio object and receives
speaker-attributed segments with offsets relative to the start of the audio.

Non-responsibilities:
- No retries (the pipeline wraps calls in with_retry)
- No event synthesis (see pipeline.batch)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from conversation.enums import Speaker


@dataclass(frozen=True)
class TranscriptSegment:
    speaker: Speaker
    text: str
    start_ms: int
    end_ms: int
    confidence: float
    channel: int


class Transcriber(ABC):
    @abstractmethod
    async def transcribe(self, audio: bytes, *, content_type: str = "audio/wav") -> list[TranscriptSegment]:
        """Return segments sorted by start_ms. Raises UpstreamServiceError."""
        raise NotImplementedError

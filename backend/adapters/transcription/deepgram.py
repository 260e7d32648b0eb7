"""
Deepgram pre-recorded transcription over HTTP.

Stereo recordings carry the microphone (rep) on channel 0 and the loopback
(prospect) on channel 1. With multichannel=true Deepgram transcribes each
channel separately, so speaker attribution comes from the channel index and
no diarization is needed.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import httpx

from adapters.transcription.base import Transcriber, TranscriptSegment
from constants import DEEPGRAM_LISTEN_URL, TRANSCRIPT_WORD_GAP_S, TRANSCRIPTION_TIMEOUT_S
from conversation.enums import Speaker
from errors import UpstreamServiceError
from observability.logger import log_event


def speaker_for_channel(channel: int) -> Speaker:
    return Speaker.REP if channel == 0 else Speaker.PROSPECT


def _to_ms(seconds: Any) -> int:
    return int(float(seconds) * 1000)


def _segment_from_words(words: Sequence[Mapping[str, Any]], channel: int) -> TranscriptSegment:
    confidences = [float(w.get("confidence", 0.0)) for w in words]
    return TranscriptSegment(
        speaker=speaker_for_channel(channel),
        text=" ".join(str(w.get("punctuated_word") or w.get("word", "")) for w in words).strip(),
        start_ms=_to_ms(words[0]["start"]),
        end_ms=_to_ms(words[-1]["end"]),
        confidence=sum(confidences) / len(confidences),
        channel=channel,
    )


def _group_words(words: Sequence[Mapping[str, Any]], gap_s: float) -> list[list[Mapping[str, Any]]]:
    groups: list[list[Mapping[str, Any]]] = []
    current: list[Mapping[str, Any]] = []
    for word in words:
        if current and float(word["start"]) - float(current[-1]["end"]) > gap_s:
            groups.append(current)
            current = []
        current.append(word)
    if current:
        groups.append(current)
    return groups


def segments_from_response(payload: Mapping[str, Any], *, gap_s: float = TRANSCRIPT_WORD_GAP_S) -> list[TranscriptSegment]:
    """
    Convert a Deepgram /v1/listen response into sorted segments.

    Prefers results.utterances (provider-side segmentation). Without them,
    each channel's words are grouped into segments split on silences longer
    than gap_s.
    """
    results = payload.get("results") or {}
    segments: list[TranscriptSegment] = []

    utterances = results.get("utterances") or []
    if utterances:
        for utt in utterances:
            text = str(utt.get("transcript", "")).strip()
            if not text:
                continue
            channel = int(utt.get("channel", 0))
            segments.append(
                TranscriptSegment(
                    speaker=speaker_for_channel(channel),
                    text=text,
                    start_ms=_to_ms(utt["start"]),
                    end_ms=_to_ms(utt["end"]),
                    confidence=float(utt.get("confidence", 0.0)),
                    channel=channel,
                )
            )
    else:
        for channel, channel_result in enumerate(results.get("channels") or []):
            alternatives = channel_result.get("alternatives") or []
            if not alternatives:
                continue
            words = alternatives[0].get("words") or []
            for group in _group_words(words, gap_s):
                segment = _segment_from_words(group, channel)
                if segment.text:
                    segments.append(segment)

    segments.sort(key=lambda s: (s.start_ms, s.channel))
    return segments


class DeepgramTranscriber(Transcriber):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "nova-2",
        http: httpx.AsyncClient | None = None,
        timeout_s: float = TRANSCRIPTION_TIMEOUT_S,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._http = http or httpx.AsyncClient(timeout=timeout_s)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def transcribe(self, audio: bytes, *, content_type: str = "audio/wav") -> list[TranscriptSegment]:
        response = await self._http.post(
            DEEPGRAM_LISTEN_URL,
            params={
                "model": self._model,
                "multichannel": "true",
                "utterances": "true",
                "punctuate": "true",
                "smart_format": "true",
            },
            headers={
                "Authorization": f"Token {self._api_key}",
                "Content-Type": content_type,
            },
            content=audio,
        )
        if not response.is_success:
            raise UpstreamServiceError(
                "transcription",
                f"Deepgram transcription failed: {response.status_code}",
                status_code=response.status_code,
            )

        payload = response.json()
        segments = segments_from_response(payload)

        metadata = payload.get("metadata") or {}
        log_event({
            "event_type": "TRANSCRIPTION_COMPLETED",
            "audio_bytes": len(audio),
            "channels": metadata.get("channels"),
            "duration_s": metadata.get("duration"),
            "segments": len(segments),
        })
        return segments

"""
Live recommendation orchestrator.

Per call, per question hash:  (none) -> pending -> cached

On a trigger:
1. Hash the normalized question (lowercase, only [a-z0-9]).
2. A cache entry younger than the TTL is returned with cached=True.
3. An identical request started within the debounce window shares the
   running computation instead of starting a second one.
4. Otherwise: lightweight context from the last M records, deterministic
   signals, knowledge lookup + AI classification, recommendation
   generation, all under one hard timeout, using the fast model tier.

Every failure inside the timeout (including the timeout itself) becomes an
ok=False response with the stage latencies gathered so far. A request
never hangs past the timeout and never raises to its caller.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Mapping, Sequence

from adapters.llm.base import JsonCompletionClient
from adapters.retrieval.base import KnowledgeRetriever, KnowledgeSnippet
from ai.grounding import Outcome
from ai.recommendations.generator import empty_recommendations, generate_recommendations
from ai.recommendations.types import RecommendationSet
from ai.signals.classifier import classify_ai_signals
from constants import (
    KNOWLEDGE_MIN_SIMILARITY,
    KNOWLEDGE_RESULT_LIMIT,
    LIVE_CACHE_TTL_MS,
    LIVE_DEBOUNCE_WINDOW_MS,
    LIVE_MAX_CONTEXT_UTTERANCES,
    LIVE_MAX_OUTPUT_TOKENS,
    LIVE_REQUEST_TIMEOUT_MS,
    NO_MODEL,
)
from conversation.serializer import ConversationContext
from conversation.transcript import TranscriptRecord
from live.context import build_live_context
from live.session_store import CacheEntry, InFlight, LiveSessionStore
from observability.logger import log_event
from signals.extractor import extract_signals

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_question(question: str) -> str:
    return _NON_ALNUM.sub("", question.lower())


def question_hash(question: str) -> str:
    return hashlib.sha256(normalize_question(question).encode("utf-8")).hexdigest()[:16]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Request / Response
# =============================================================================

@dataclass(frozen=True)
class LiveRecommendationRequest:
    call_id: str
    workspace_id: str
    question: str
    recent: Sequence[TranscriptRecord]
    timestamp_ms: int


@dataclass(frozen=True)
class LiveRecommendationResponse:
    ok: bool
    call_id: str
    question_hash: str
    recommendations: RecommendationSet
    cached: bool
    generated_at_ms: int
    latency_ms: int
    stage_latencies_ms: Mapping[str, int] = field(default_factory=dict)
    error: str | None = None


# =============================================================================
# Orchestrator
# =============================================================================

class LiveRecommender:
    """
    Owns the session store and drives one live computation per question.

    One instance serves every call in the process; all per-call state lives
    in the LiveSessionStore and is dropped by end_call().
    """

    def __init__(
        self,
        *,
        llm: JsonCompletionClient | None,
        model: str,
        retriever: KnowledgeRetriever | None = None,
        store: LiveSessionStore[LiveRecommendationResponse] | None = None,
        clock: Callable[[], int] = _wall_clock_ms,
        timeout_ms: int = LIVE_REQUEST_TIMEOUT_MS,
        cache_ttl_ms: int = LIVE_CACHE_TTL_MS,
        debounce_ms: int = LIVE_DEBOUNCE_WINDOW_MS,
        max_utterances: int = LIVE_MAX_CONTEXT_UTTERANCES,
    ) -> None:
        self._llm = llm
        self._model = model
        self._retriever = retriever
        self._store: LiveSessionStore[LiveRecommendationResponse] = store or LiveSessionStore()
        self._clock = clock
        self._timeout_ms = timeout_ms
        self._cache_ttl_ms = cache_ttl_ms
        self._debounce_ms = debounce_ms
        self._max_utterances = max_utterances

    @property
    def is_configured(self) -> bool:
        return self._llm is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def recommend(self, request: LiveRecommendationRequest) -> LiveRecommendationResponse:
        """Return recommendations for a detected question. Never raises."""
        started_ms = self._clock()
        key = question_hash(request.question)

        if self._llm is None:
            return self._failure(request, key, started_ms, {}, "language model not configured")

        session = self._store.get_or_create(request.call_id)

        cached = session.cache.get(key)
        if cached is not None:
            if started_ms - cached.stored_at_ms < self._cache_ttl_ms:
                log_event({
                    "event_type": "LIVE_RECOMMENDATION_CACHE_HIT",
                    "call_id": request.call_id,
                    "question_hash": key,
                })
                return replace(
                    cached.response,
                    cached=True,
                    latency_ms=self._clock() - started_ms,
                )
            del session.cache[key]

        pending = session.in_flight.get(key)
        if (
            pending is not None
            and not pending.task.done()
            and started_ms - pending.started_at_ms <= self._debounce_ms
        ):
            log_event({
                "event_type": "LIVE_RECOMMENDATION_DEBOUNCED",
                "call_id": request.call_id,
                "question_hash": key,
            })
            return await asyncio.shield(pending.task)

        task = asyncio.ensure_future(self._compute(request, key, started_ms))
        session.in_flight[key] = InFlight(task=task, started_at_ms=started_ms)

        def _cleanup(done: asyncio.Task[LiveRecommendationResponse]) -> None:
            current = self._store.get(request.call_id)
            if current is None:
                return
            entry = current.in_flight.get(key)
            if entry is not None and entry.task is done:
                del current.in_flight[key]

        task.add_done_callback(_cleanup)
        return await asyncio.shield(task)

    def latest(self, call_id: str) -> LiveRecommendationResponse | None:
        """Most recent completed response for a call, if any."""
        session = self._store.get(call_id)
        if session is None or not session.history:
            return None
        return session.history[-1]

    def end_call(self, call_id: str) -> None:
        """Drop every cache, in-flight and history entry for the call."""
        if self._store.end(call_id):
            log_event({"event_type": "LIVE_SESSION_CLEARED", "call_id": call_id})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _compute(
        self,
        request: LiveRecommendationRequest,
        key: str,
        started_ms: int,
    ) -> LiveRecommendationResponse:
        stages: dict[str, int] = {}
        try:
            recommendations = await asyncio.wait_for(
                self._run_stages(request, stages),
                timeout=self._timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            log_event({
                "event_type": "LIVE_RECOMMENDATION_TIMEOUT",
                "call_id": request.call_id,
                "question_hash": key,
                "timeout_ms": self._timeout_ms,
                "stage_latencies_ms": stages,
            })
            response = self._failure(
                request, key, started_ms, stages, f"timed out after {self._timeout_ms}ms"
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "LIVE_RECOMMENDATION_FAILED",
                "call_id": request.call_id,
                "question_hash": key,
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            response = self._failure(request, key, started_ms, stages, str(exc))
        else:
            if recommendations.degraded:
                response = self._failure(
                    request, key, started_ms, stages,
                    recommendations.error or "recommendation generation failed",
                )
            else:
                now = self._clock()
                response = LiveRecommendationResponse(
                    ok=True,
                    call_id=request.call_id,
                    question_hash=key,
                    recommendations=recommendations,
                    cached=False,
                    generated_at_ms=now,
                    latency_ms=now - started_ms,
                    stage_latencies_ms=dict(stages),
                )

        session = self._store.get(request.call_id)
        if session is not None:
            if response.ok:
                session.cache[key] = CacheEntry(response=response, stored_at_ms=self._clock())
            session.remember(response)

        log_event({
            "event_type": "LIVE_RECOMMENDATION_COMPLETED",
            "call_id": request.call_id,
            "question_hash": key,
            "ok": response.ok,
            "latency_ms": response.latency_ms,
            "count": len(response.recommendations.recommendations),
        })
        return response

    async def _run_stages(
        self,
        request: LiveRecommendationRequest,
        stages: dict[str, int],
    ) -> RecommendationSet:
        mark = self._clock()

        def lap(name: str) -> None:
            nonlocal mark
            now = self._clock()
            stages[name] = now - mark
            mark = now

        ctx = build_live_context(
            call_id=request.call_id,
            workspace_id=request.workspace_id,
            recent=request.recent,
            timestamp_ms=request.timestamp_ms,
            max_utterances=self._max_utterances,
        )
        signals = extract_signals(ctx)
        lap("signals")

        knowledge, ai_signals = await asyncio.gather(
            self._retrieve(request),
            classify_ai_signals(
                ctx,
                llm=self._llm,
                model=self._model,
                max_output_tokens=LIVE_MAX_OUTPUT_TOKENS,
            ),
        )
        lap("ai_signals")

        recommendations = await generate_recommendations(
            ctx,
            signals,
            ai_signals,
            llm=self._llm,
            model=self._model,
            knowledge=knowledge,
            question=request.question,
            max_output_tokens=LIVE_MAX_OUTPUT_TOKENS,
        )
        lap("recommendations")
        return recommendations

    async def _retrieve(self, request: LiveRecommendationRequest) -> list[KnowledgeSnippet]:
        if self._retriever is None:
            return []
        try:
            return await self._retriever.retrieve(
                request.workspace_id,
                request.question,
                limit=KNOWLEDGE_RESULT_LIMIT,
                min_similarity=KNOWLEDGE_MIN_SIMILARITY,
            )
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "KNOWLEDGE_RETRIEVAL_FAILED",
                "call_id": request.call_id,
                "error": str(exc),
            })
            return []

    def _failure(
        self,
        request: LiveRecommendationRequest,
        key: str,
        started_ms: int,
        stages: Mapping[str, int],
        error: str,
    ) -> LiveRecommendationResponse:
        now = self._clock()
        empty = empty_recommendations(
            _identity_context(request),
            self._model if self._llm is not None else NO_MODEL,
            Outcome.FAILED,
            error,
        )
        return LiveRecommendationResponse(
            ok=False,
            call_id=request.call_id,
            question_hash=key,
            recommendations=empty,
            cached=False,
            generated_at_ms=now,
            latency_ms=now - started_ms,
            stage_latencies_ms=dict(stages),
            error=error,
        )


def _identity_context(request: LiveRecommendationRequest) -> ConversationContext:
    return build_live_context(
        call_id=request.call_id,
        workspace_id=request.workspace_id,
        recent=(),
        timestamp_ms=request.timestamp_ms,
    )

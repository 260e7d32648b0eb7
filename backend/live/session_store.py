"""
Session-scoped storage for the live recommendation path.

Lifecycle:
- A LiveSession is created on the first request for a call.
- It is destroyed by end_call(); nothing survives the call.
- The store is an explicit object owned by the LiveRecommender, never a
  module-level singleton.

Maps per session (keyed by question hash):
- cache:     completed responses with the time they were stored
- in_flight: running computations with the time they started
- history:   completed responses in arrival order (bounded)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from constants import LIVE_HISTORY_LIMIT

R = TypeVar("R")


@dataclass(frozen=True)
class CacheEntry(Generic[R]):
    response: R
    stored_at_ms: int


@dataclass(frozen=True)
class InFlight(Generic[R]):
    task: asyncio.Task[R]
    started_at_ms: int


@dataclass
class LiveSession(Generic[R]):
    call_id: str
    cache: dict[str, CacheEntry[R]] = field(default_factory=dict)
    in_flight: dict[str, InFlight[R]] = field(default_factory=dict)
    history: list[R] = field(default_factory=list)

    def remember(self, response: R) -> None:
        self.history.append(response)
        del self.history[:-LIVE_HISTORY_LIMIT]


class LiveSessionStore(Generic[R]):
    """call_id -> LiveSession."""

    def __init__(self) -> None:
        self._sessions: dict[str, LiveSession[R]] = {}

    def get(self, call_id: str) -> LiveSession[R] | None:
        return self._sessions.get(call_id)

    def get_or_create(self, call_id: str) -> LiveSession[R]:
        session = self._sessions.get(call_id)
        if session is None:
            session = LiveSession(call_id=call_id)
            self._sessions[call_id] = session
        return session

    def end(self, call_id: str) -> bool:
        """
        Tear down a call's maps. Running computations are left to finish;
        their results are discarded because the session no longer exists.
        """
        session = self._sessions.pop(call_id, None)
        if session is None:
            return False
        session.cache.clear()
        session.in_flight.clear()
        session.history.clear()
        return True

    def active_calls(self) -> list[str]:
        return sorted(self._sessions)

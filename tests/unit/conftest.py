# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from adapters.llm.base import JsonCompletionClient
from adapters.storage.memory import InMemoryCallStore
from errors import UpstreamServiceError
from observability import logger


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeLLM(JsonCompletionClient):
    """
    Scripted JSON client.

    Each call pops the next response; the last one repeats. A response that
    is an exception instance is raised instead of returned. When gate is
    set, every call waits for it first.
    """

    def __init__(self, *responses: Any, gate: asyncio.Event | None = None) -> None:
        self._responses = list(responses) or [{}]
        self._gate = gate
        self.calls: list[dict[str, Any]] = []

    async def complete_json(
        self,
        *,
        system: str,
        user: str,
        model: str,
        max_output_tokens: int,
        temperature: float | None = None,
    ) -> object:
        self.calls.append({
            "system": system,
            "user": user,
            "model": model,
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
        })
        if self._gate is not None:
            await self._gate.wait()
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class FailingCallStore(InMemoryCallStore):
    """In-memory store whose named methods raise a retryable 503."""

    def __init__(self, *failing: str) -> None:
        super().__init__()
        self.failing = set(failing)
        self.attempts: dict[str, int] = {}

    def _maybe_fail(self, name: str) -> None:
        self.attempts[name] = self.attempts.get(name, 0) + 1
        if name in self.failing:
            raise UpstreamServiceError("storage", f"{name} failed: 503", status_code=503)

    async def download_audio(self, object_path: str) -> bytes:
        self._maybe_fail("download_audio")
        return await super().download_audio(object_path)

    async def update_call(self, call_id, fields):
        self._maybe_fail("update_call")
        await super().update_call(call_id, fields)

    async def store_utterances(self, call_id, workspace_id, records):
        self._maybe_fail("store_utterances")
        await super().store_utterances(call_id, workspace_id, records)

    async def store_summary(self, call_id, workspace_id, summary):
        self._maybe_fail("store_summary")
        await super().store_summary(call_id, workspace_id, summary)

    async def store_events(self, call_id, workspace_id, events):
        self._maybe_fail("store_events")
        await super().store_events(call_id, workspace_id, events)


class SleepRecorder:
    """Drop-in for asyncio.sleep that returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeUtcClock:
    """Datetime clock advanced by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    lines: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        lines.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    return lines


@pytest.fixture
def make_llm() -> Callable[..., FakeLLM]:
    return FakeLLM


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock()


@pytest.fixture
def failing_store() -> Callable[..., FailingCallStore]:
    return FailingCallStore

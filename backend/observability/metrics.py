"""
Timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- Prefer the `timed()` context manager to avoid leaked timers
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from observability.logger import log_event


@dataclass
class Timer:
    """Handle yielded by `timed()`; value_ms is set when the block exits."""
    name: str
    start_ns: int = field(default_factory=time.monotonic_ns)
    value_ms: int | None = None

    def elapsed_ms(self) -> int:
        return (time.monotonic_ns() - self.start_ns) // 1_000_000


def emit_timer(
    name: str,
    value_ms: int,
    *,
    call_id: str | None = None,
    job_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit one METRIC_TIMER event."""
    log_event({
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": value_ms,
        "call_id": call_id,
        "job_id": job_id,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    call_id: str | None = None,
    job_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[Timer]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("pipeline_stage_transcribe", call_id=job.call_id) as t:
            segments = await transcriber.transcribe(audio)
        stage_ms = t.value_ms
    """
    timer = Timer(name=name)
    try:
        yield timer
    finally:
        timer.value_ms = timer.elapsed_ms()
        emit_timer(
            name,
            timer.value_ms,
            call_id=call_id,
            job_id=job_id,
            details=details,
        )

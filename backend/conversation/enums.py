"""Closed vocabularies shared by the reducer, serializer and signal layers."""

from __future__ import annotations

from enum import Enum


class Speaker(str, Enum):
    """The two fixed roles on a sales call."""

    REP = "rep"
    PROSPECT = "prospect"


class Phase(str, Enum):
    """
    Call lifecycle phase.

    ACTIVE:
        call.started has been applied and call.ended has not.

    ENDED:
        call.ended has been applied. Later events are still folded in
        (late transcript finals are common) but the phase never reverts.
    """

    ACTIVE = "active"
    ENDED = "ended"

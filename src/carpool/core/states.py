"""Participant state tables, one per role.

A participant's role is fixed by the trip: the publisher drives, everybody
else rides. Each role has its own vocabulary and its own transition table, so
a passenger can never be moved into a driver state and vice versa.
"""
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping

from carpool.errors import StateTransitionError


class Role(str, Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"


class DriverState(str, Enum):
    PLANNING = "planning"          # initial
    DRIVING = "driving"
    STOPPED = "stopped"
    COMPLETED = "completed"
    DISCONTINUED = "discontinued"


class PassengerState(str, Enum):
    OBSERVING = "observing"        # initial
    WAITING = "waiting"
    RIDING = "riding"
    CANCELED = "canceled"
    EXPELLED = "expelled"
    ARRIVED = "arrived"
    DISCONTINUED = "discontinued"  # stamped when the driver discontinues


DRIVER_TRANSITIONS: Mapping[DriverState, FrozenSet[DriverState]] = MappingProxyType({
    DriverState.PLANNING: frozenset({DriverState.DRIVING, DriverState.DISCONTINUED}),
    DriverState.DRIVING: frozenset({DriverState.COMPLETED, DriverState.STOPPED, DriverState.DISCONTINUED}),
    DriverState.STOPPED: frozenset({DriverState.DRIVING, DriverState.DISCONTINUED}),
})

PASSENGER_TRANSITIONS: Mapping[PassengerState, FrozenSet[PassengerState]] = MappingProxyType({
    PassengerState.OBSERVING: frozenset({PassengerState.WAITING}),
    PassengerState.WAITING: frozenset({PassengerState.RIDING, PassengerState.CANCELED}),
    PassengerState.RIDING: frozenset({PassengerState.EXPELLED, PassengerState.ARRIVED}),
})

TRANSITIONS = MappingProxyType({
    Role.DRIVER: DRIVER_TRANSITIONS,
    Role.PASSENGER: PASSENGER_TRANSITIONS,
})

INITIAL_STATE = MappingProxyType({
    Role.DRIVER: DriverState.PLANNING.value,
    Role.PASSENGER: PassengerState.OBSERVING.value,
})

# Participants counted against a trip's capacity
ACTIVE_STATES = frozenset({"waiting", "riding", "planning", "driving"})

# leave(): what a departing passenger's state becomes
LEAVE_TRANSITIONS = MappingProxyType({
    PassengerState.RIDING.value: PassengerState.EXPELLED.value,
    PassengerState.WAITING.value: PassengerState.CANCELED.value,
})


def _state_enum(role: Role):
    return DriverState if role is Role.DRIVER else PassengerState


def allowed_targets(role: Role, current: str) -> FrozenSet[str]:
    """Targets reachable from *current* for *role*.

    Raises StateTransitionError (with no allowed targets) when *current* is
    not a key of the role's table, e.g. a terminal state.
    """
    table = TRANSITIONS[role]
    try:
        key = _state_enum(role)(current)
    except ValueError:
        key = None
    if key not in table:
        raise StateTransitionError(current, "?")
    return frozenset(s.value for s in table[key])


def check_transition(role: Role, current: str, target: str) -> None:
    try:
        targets = allowed_targets(role, current)
    except StateTransitionError:
        raise StateTransitionError(current, target) from None
    if target not in targets:
        raise StateTransitionError(current, target, targets)

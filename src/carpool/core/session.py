"""Unit of work for one engine operation on one trip.

The session holds private copies of the trip and of every participant row it
touches. Nothing reaches the repository or the event bus until ``commit()``;
an exception anywhere in the operation simply drops the session.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Set

from carpool.core.models import Participant, ParticipantExtra, Trip, TripEvent
from carpool.core.states import INITIAL_STATE, Role
from carpool.errors import NotFoundError
from carpool.repository import TripRepository

log = logging.getLogger(__name__)


class TripSession:
    def __init__(self, repo: TripRepository, trip: Trip, clock: Callable[[], int]):
        self.repo = repo
        self.trip = trip
        self.clock = clock
        self._participants: Dict[str, Participant] = {}
        self._dirty: Set[str] = set()
        self._trip_dirty = False
        self._closed_by: Optional[str] = None
        self.events: List[TripEvent] = []
        self._writes: List[Callable[[], None]] = []
        self._after: List[Callable[[], None]] = []

    # ---- trip ----

    @property
    def key(self) -> str:
        return self.trip.key

    @property
    def driver_id(self) -> str:
        return self.trip.publisher_id

    def role_of(self, user_id: str) -> Role:
        return Role.DRIVER if user_id == self.driver_id else Role.PASSENGER

    def changed(self) -> None:
        self._trip_dirty = True

    def close(self, by_user_id: str) -> None:
        self.trip.closed = True
        self.trip.closed_by = by_user_id
        self._closed_by = by_user_id
        self.changed()

    # ---- participants ----

    def participant(self, user_id: str, required: bool = True) -> Optional[Participant]:
        p = self._participants.get(user_id)
        if p is None:
            p = self.repo.fetch_participant(self.key, user_id)
            if p is not None:
                self._participants[user_id] = p
        if p is None and required:
            raise NotFoundError(f"{user_id} is not a participant of {self.key}")
        return p

    def participants(self) -> List[Participant]:
        """Every participating row, with this session's edits applied."""
        out: Dict[str, Participant] = {}
        for p in self.repo.participants(self.key):
            out[p.user_id] = self._participants.setdefault(p.user_id, p)
        for uid, p in self._participants.items():
            out.setdefault(uid, p)
        return [p for p in out.values() if p.participating]

    def save_participant(self, p: Participant) -> None:
        self._participants[p.user_id] = p
        self._dirty.add(p.user_id)

    def subscribe(self, user_id: str, extra: Optional[ParticipantExtra] = None) -> Participant:
        """Make *user_id* a participant; a returning user starts over."""
        p = self.participant(user_id, required=False)
        if p is None or not p.participating:
            p = Participant(
                trip_key=self.key,
                user_id=user_id,
                extra=extra or ParticipantExtra(state=INITIAL_STATE[self.role_of(user_id)]),
            )
        self.save_participant(p)
        return p

    def unsubscribe(self, user_id: str) -> None:
        p = self.participant(user_id, required=False)
        if p is not None:
            p.participating = False
            self.save_participant(p)

    # ---- side effects ----

    def emit(self, event: TripEvent) -> None:
        self.events.append(event)

    def defer_write(self, fn: Callable[[], None]) -> None:
        """Run a write to another entity as part of the commit."""
        self._writes.append(fn)

    def on_commit(self, fn: Callable[[], None]) -> None:
        self._after.append(fn)

    def commit(self, publish: Callable[[TripEvent], None]) -> Trip:
        if self._trip_dirty:
            self.repo.save_trip(self.trip)
        for uid in sorted(self._dirty):
            self.repo.save_participant(self._participants[uid])
        for fn in self._writes:
            fn()
        if self._closed_by is not None:
            self.repo.close_trip(self.trip, self._closed_by)
        if self._trip_dirty or self._dirty:
            self.repo.changed(self.trip)
        for fn in self._after:
            fn()
        for event in self.events:
            publish(event)
        log.debug("Committed %s: %d participant write(s), %d event(s)",
                  self.key, len(self._dirty), len(self.events))
        return self.trip

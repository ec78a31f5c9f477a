from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from carpool.config import Settings
from carpool.core.coordinates import CoordinatesIn
from carpool.core.machine import TripStateMachine, new_trip
from carpool.core.models import Participant, RouteResult, Trip, Waypoint
from carpool.core.notifications import EventBus, NotificationTrigger
from carpool.core.recurring import RecurringSpawner
from carpool.core.routing import RouteEngine
from carpool.core.session import TripSession
from carpool.errors import NotAuthorizedError, NotFoundError, TripClosedError
from carpool.providers.base import RouteProvider
from carpool.repository import InMemoryRepository, TripRepository

log = logging.getLogger(__name__)


def _now() -> int:
    return int(time.time())


class TripLocks:
    """
    One re-entrant lock per key, alive only while some thread holds or waits
    for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]


class TripEngine:
    """
    Entry point for every trip operation.

    State-changing operations on the same trip run one at a time. Each runs in
    a ``TripSession`` that is committed only if the operation succeeds, so a
    failure (validation, routing, illegal transition) leaves the stored trip,
    its participants and the event stream untouched.
    """

    def __init__(
        self,
        repo: TripRepository,
        provider: RouteProvider,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if settings is None:
            from carpool.config import settings as default_settings
            settings = default_settings
        self.settings = settings
        self.repo = repo
        self.clock = clock or _now
        self.locks = TripLocks()
        self.notifications = NotificationTrigger(bus)
        self.routes = RouteEngine(
            provider,
            reroute_min_interval_s=settings.reroute_min_interval_s,
            distance_method=settings.distance_method,
        )
        self.machine = TripStateMachine(
            self.routes,
            self.notifications,
            settings.distances(),
            distance_method=settings.distance_method,
            tz_name=settings.timezone,
        )
        self.spawner = RecurringSpawner(self, tz_name=settings.timezone)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self, key: str) -> Iterator[TripSession]:
        with self.locks.hold(key):
            trip = self.repo.fetch_trip(key)
            if trip is None:
                raise NotFoundError(f"Trip {key} not found")
            if trip.closed:
                raise TripClosedError()
            session = TripSession(self.repo, trip, self.clock)
            yield session
            session.commit(self.notifications.publish)

    # ------------------------------------------------------------------
    # Reads (snapshots, no lock)
    # ------------------------------------------------------------------

    def get_trip(self, key: str) -> Trip:
        trip = self.repo.fetch_trip(key)
        if trip is None:
            raise NotFoundError(f"Trip {key} not found")
        return trip

    def get_participant(self, key: str, user_id: str) -> Participant:
        p = self.repo.fetch_participant(key, user_id)
        if p is None:
            raise NotFoundError(f"{user_id} is not a participant of {key}")
        return p

    def participants(self, key: str) -> List[Participant]:
        return [p for p in self.repo.participants(key) if p.participating]

    def participating(
        self,
        user_id: str,
        from_time: Optional[int] = None,
        until_time: Optional[int] = None,
        states: Optional[List[str]] = None,
    ) -> List[Trip]:
        """Trips *user_id* takes part in, optionally within a time window and states."""
        out: List[Trip] = []
        for p in self.repo.participations(user_id):
            if not p.participating:
                continue
            if states is not None and (p.state or "observing") not in states:
                continue
            trip = self.repo.fetch_trip(p.trip_key)
            if trip is None:
                continue
            start, end = trip.attributes.start_time, trip.attributes.end_time
            if from_time and end is not None and end < from_time:
                continue
            if until_time and start is not None and start > until_time:
                continue
            out.append(trip)
        return sorted(out, key=lambda t: t.attributes.start_time or 0)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        driver_id: str,
        fields: Mapping[str, Any],
        relate_to: Optional[str] = None,
        recurring: Optional[Mapping[str, Any]] = None,
    ) -> Trip:
        trip = new_trip(driver_id, fields, self.clock())
        with self.locks.hold(trip.key):
            session = TripSession(self.repo, trip, self.clock)
            self.machine.create(session, recurring=recurring, relate_to=relate_to)
            session.changed()
            created = session.commit(self.notifications.publish)
        log.info("Created trip %s (%s) for %s", created.key, created.attributes.type, driver_id)
        return created

    def join(self, key: str, passenger_id: str, coordinates: Optional[CoordinatesIn] = None) -> bool:
        with self._session(key) as s:
            return self.machine.join(s, passenger_id, coordinates)

    def leave(self, key: str, passenger_id: str) -> bool:
        with self._session(key) as s:
            return self.machine.leave(s, passenger_id)

    def start(self, key: str, driver_id: str, coordinates: Optional[CoordinatesIn] = None) -> Trip:
        with self._session(key) as s:
            self.machine.start(s, driver_id, coordinates)
        return self.get_trip(key)

    def discontinue(self, key: str, driver_id: str) -> Trip:
        with self._session(key) as s:
            self.machine.discontinue(s, driver_id)
        return self.get_trip(key)

    def completed(self, key: str, driver_id: str) -> Trip:
        with self._session(key) as s:
            self.machine.completed(s, driver_id)
        return self.get_trip(key)

    def set_state(
        self,
        key: str,
        user_id: str,
        state: str,
        extra: Optional[Dict[str, Any]] = None,
        acting_user_id: Optional[str] = None,
    ) -> bool:
        with self._session(key) as s:
            self._check_actor(s, user_id, acting_user_id)
            return self.machine.set_state(s, user_id, state, extra)

    def set_coordinates(
        self,
        key: str,
        user_id: Union[str, Mapping[str, Optional[CoordinatesIn]]],
        coordinates: Optional[CoordinatesIn] = None,
        acting_user_id: Optional[str] = None,
    ) -> Trip:
        with self._session(key) as s:
            targets = list(user_id) if isinstance(user_id, Mapping) else [user_id]
            for uid in targets:
                self._check_actor(s, uid, acting_user_id)
            self.machine.set_coordinates(s, user_id, coordinates)
        return self.get_trip(key)

    def set_estimates(self, key: str, driver_id: str, minutes: float, km: float,
                      legs: List[Dict[str, Any]], start_time: Optional[int] = None,
                      end_time: Optional[int] = None) -> Trip:
        with self._session(key) as s:
            self.machine.set_estimates(s, driver_id, minutes, km, legs, start_time, end_time)
        return self.get_trip(key)

    def route(self, key: str, waypoints: Optional[List[Waypoint]] = None,
              options: Optional[Dict[str, Any]] = None) -> RouteResult:
        with self._session(key) as s:
            result = self.routes.route(s, waypoints, options)
        return result

    @staticmethod
    def _check_actor(session: TripSession, user_id: str, acting_user_id: Optional[str]) -> None:
        """Only the user themselves or the trip's driver may act for a user."""
        if acting_user_id is None:
            return
        if acting_user_id != user_id and acting_user_id != session.driver_id:
            raise NotAuthorizedError()


def build_engine(
    settings: Optional[Settings] = None,
    repo: Optional[TripRepository] = None,
    bus: Optional[EventBus] = None,
) -> TripEngine:
    from carpool.providers.cached import build_provider

    if settings is None:
        from carpool.config import settings as default_settings
        settings = default_settings
    provider = build_provider(settings.route_provider)
    return TripEngine(repo or InMemoryRepository(), provider, bus=bus, settings=settings)

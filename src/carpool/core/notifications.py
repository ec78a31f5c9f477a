"""Trip lifecycle and proximity events.

The engine only produces events; delivery (push, e-mail, chat) belongs to
whoever subscribes to the bus. Events are staged on the session and published
after it commits.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from carpool.cache import keys
from carpool.cache.redis_client import cache_set_add, cache_set_contains, cache_set_remove
from carpool.core.models import Location, TripEvent
from carpool.core.session import TripSession

log = logging.getLogger(__name__)

STARTED = "trip/started"
ARRIVING = "trip/arriving"
FINISHING = "trip/finishing"
PICKUP = "trip/pickup"
USER_STATE = "trip/user/state"
ADDED = "trip/added"


class EventBus(ABC):
    @abstractmethod
    def publish(self, event: TripEvent) -> None:
        raise NotImplementedError


class LoggingEventBus(EventBus):
    """Default bus: writes every event to the log."""

    def publish(self, event: TripEvent) -> None:
        log.info("event %s trip=%s by=%s %s", event.type, event.trip, event.by_user_id, event.instructions)


class InMemoryEventBus(EventBus):
    def __init__(self) -> None:
        self.events: List[TripEvent] = []

    def publish(self, event: TripEvent) -> None:
        self.events.append(event)

    def of_type(self, type_: str) -> List[TripEvent]:
        return [e for e in self.events if e.type == type_]


class NotificationTrigger:
    """
    Builds trip events and remembers which passengers already got the
    one-per-approach "arriving" note.

    The idempotency set lives here rather than on the participant row. It is
    kept in process and, when Redis is configured, mirrored to a Redis set so
    several API workers agree on it.
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus or LoggingEventBus()
        self._lock = threading.Lock()
        self._arriving: Dict[str, Set[str]] = {}

    def publish(self, event: TripEvent) -> None:
        try:
            self.bus.publish(event)
        except Exception:
            # fire-and-forget: delivery problems belong to the bus
            log.exception("Publishing %s for %s failed", event.type, event.trip)

    # ---- idempotency set ----

    def got_arriving_note(self, trip_key: str, user_id: str) -> bool:
        with self._lock:
            if user_id in self._arriving.get(trip_key, ()):
                return True
        return bool(cache_set_contains(keys.arriving_notified(trip_key), user_id))

    def _mark_arriving(self, trip_key: str, user_id: str) -> None:
        with self._lock:
            self._arriving.setdefault(trip_key, set()).add(user_id)
        cache_set_add(keys.arriving_notified(trip_key), user_id)

    def forget(self, trip_key: str, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._arriving.pop(trip_key, None)
            else:
                self._arriving.get(trip_key, set()).discard(user_id)
        cache_set_remove(keys.arriving_notified(trip_key), user_id)

    # ---- events ----

    def _stage(self, session: TripSession, type_: str, by_user_id: str,
               instructions: Dict[str, Any]) -> TripEvent:
        event = TripEvent(
            type=type_,
            trip=session.key,
            by_user_id=by_user_id,
            instructions=instructions,
            timestamp=session.clock(),
        )
        session.emit(event)
        return event

    def started(self, session: TripSession, timestamp: int) -> None:
        self._stage(session, STARTED, session.driver_id, {"timestamp": timestamp})

    def arriving(self, session: TripSession, passenger_id: str) -> bool:
        """Stage the arriving note once per passenger; False if already sent."""
        if self.got_arriving_note(session.key, passenger_id):
            return False
        if any(e.type == ARRIVING and e.instructions.get("passengerId") == passenger_id
               for e in session.events):
            return False
        self._stage(session, ARRIVING, session.driver_id, {
            "driverId": session.driver_id,
            "passengerId": passenger_id,
            "passengerName": session.repo.display_name(passenger_id),
        })
        session.on_commit(lambda: self._mark_arriving(session.key, passenger_id))
        return True

    def finishing(self, session: TripSession) -> None:
        self._stage(session, FINISHING, session.driver_id, {"driverId": session.driver_id})

    def pickup(self, session: TripSession, passenger_id: str) -> None:
        self._stage(session, PICKUP, passenger_id, {
            "driverId": session.driver_id,
            "passengerId": passenger_id,
            "passengerName": session.repo.display_name(passenger_id),
        })

    def user_state(self, session: TripSession, user_id: str, extra: Dict[str, Any]) -> None:
        self._stage(session, USER_STATE, user_id, extra)

    def added(self, session: TripSession, location: Location, meters: float) -> None:
        self._stage(session, ADDED, session.driver_id, {
            "tripStream": session.key,
            "venue": session.trip.attributes.venue,
            "location": location.model_dump(exclude_none=True),
            "meters": meters,
        })

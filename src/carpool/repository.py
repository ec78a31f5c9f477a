"""Entity repository consumed by the trip engine.

The engine never owns storage: it reads and writes trips, participants and
recurring schedules through ``TripRepository``. ``InMemoryRepository`` backs
the CLI, the tests and single-process deployments; it is volatile and resets
when the process restarts.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from carpool.core.models import (
    Participant,
    RecurringParticipant,
    RecurringSchedule,
    Trip,
)

log = logging.getLogger(__name__)


class TripRepository(ABC):
    # ---- trips ----

    @abstractmethod
    def fetch_trip(self, key: str) -> Optional[Trip]:
        raise NotImplementedError

    @abstractmethod
    def save_trip(self, trip: Trip) -> None:
        raise NotImplementedError

    @abstractmethod
    def trips(self) -> List[Trip]:
        raise NotImplementedError

    def trips_for_schedule(self, schedule_id: str) -> List[Trip]:
        out = [t for t in self.trips() if t.recurring_id == schedule_id]
        return sorted(out, key=lambda t: (t.attributes.start_time or 0, t.created_at))

    def close_trip(self, trip: Trip, by_user_id: str) -> None:
        trip.closed = True
        trip.closed_by = by_user_id
        self.save_trip(trip)

    def changed(self, trip: Trip) -> None:
        """Hook called after every committed mutation of *trip*."""

    # ---- participants ----

    @abstractmethod
    def fetch_participant(self, trip_key: str, user_id: str) -> Optional[Participant]:
        raise NotImplementedError

    @abstractmethod
    def participants(self, trip_key: str) -> List[Participant]:
        raise NotImplementedError

    @abstractmethod
    def save_participant(self, participant: Participant) -> None:
        raise NotImplementedError

    @abstractmethod
    def participations(self, user_id: str) -> List[Participant]:
        raise NotImplementedError

    # ---- recurring ----

    @abstractmethod
    def fetch_schedule(self, schedule_id: str) -> Optional[RecurringSchedule]:
        raise NotImplementedError

    @abstractmethod
    def save_schedule(self, schedule: RecurringSchedule) -> None:
        raise NotImplementedError

    @abstractmethod
    def schedules(self) -> List[RecurringSchedule]:
        raise NotImplementedError

    @abstractmethod
    def fetch_recurring_participant(self, schedule_id: str, user_id: str) -> Optional[RecurringParticipant]:
        raise NotImplementedError

    @abstractmethod
    def save_recurring_participant(self, participant: RecurringParticipant) -> None:
        raise NotImplementedError

    @abstractmethod
    def recurring_participants(self, schedule_id: str) -> List[RecurringParticipant]:
        raise NotImplementedError

    # ---- users ----

    def display_name(self, user_id: str) -> str:
        return user_id


class InMemoryRepository(TripRepository):
    """Dict-backed repository. Hands out deep copies so callers never share state."""

    def __init__(self, names: Optional[Dict[str, str]] = None,
                 on_change: Optional[Callable[[Trip], None]] = None):
        self._lock = threading.Lock()
        self._trips: Dict[str, Trip] = {}
        self._participants: Dict[Tuple[str, str], Participant] = {}
        self._schedules: Dict[str, RecurringSchedule] = {}
        self._recurring: Dict[Tuple[str, str], RecurringParticipant] = {}
        self._names = dict(names or {})
        self._on_change = on_change

    def fetch_trip(self, key: str) -> Optional[Trip]:
        with self._lock:
            t = self._trips.get(key)
            return t.model_copy(deep=True) if t else None

    def save_trip(self, trip: Trip) -> None:
        with self._lock:
            self._trips[trip.key] = trip.model_copy(deep=True)

    def trips(self) -> List[Trip]:
        with self._lock:
            return [t.model_copy(deep=True) for t in self._trips.values()]

    def changed(self, trip: Trip) -> None:
        if self._on_change is not None:
            self._on_change(trip)

    def fetch_participant(self, trip_key: str, user_id: str) -> Optional[Participant]:
        with self._lock:
            p = self._participants.get((trip_key, user_id))
            return p.model_copy(deep=True) if p else None

    def participants(self, trip_key: str) -> List[Participant]:
        with self._lock:
            return [p.model_copy(deep=True)
                    for (k, _), p in self._participants.items() if k == trip_key]

    def save_participant(self, participant: Participant) -> None:
        with self._lock:
            self._participants[(participant.trip_key, participant.user_id)] = participant.model_copy(deep=True)

    def participations(self, user_id: str) -> List[Participant]:
        with self._lock:
            return [p.model_copy(deep=True)
                    for (_, uid), p in self._participants.items() if uid == user_id]

    def fetch_schedule(self, schedule_id: str) -> Optional[RecurringSchedule]:
        with self._lock:
            s = self._schedules.get(schedule_id)
            return s.model_copy(deep=True) if s else None

    def save_schedule(self, schedule: RecurringSchedule) -> None:
        with self._lock:
            self._schedules[schedule.id] = schedule.model_copy(deep=True)

    def schedules(self) -> List[RecurringSchedule]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._schedules.values()]

    def fetch_recurring_participant(self, schedule_id: str, user_id: str) -> Optional[RecurringParticipant]:
        with self._lock:
            p = self._recurring.get((schedule_id, user_id))
            return p.model_copy(deep=True) if p else None

    def save_recurring_participant(self, participant: RecurringParticipant) -> None:
        with self._lock:
            key = (participant.schedule_id, participant.user_id)
            self._recurring[key] = participant.model_copy(deep=True)

    def recurring_participants(self, schedule_id: str) -> List[RecurringParticipant]:
        with self._lock:
            return [p.model_copy(deep=True)
                    for (sid, _), p in self._recurring.items() if sid == schedule_id]

    def display_name(self, user_id: str) -> str:
        return self._names.get(user_id, user_id)

"""Recurring trips: schedule arithmetic, day membership and the spawner."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from carpool.core.models import CoordinateRecord, RecurringParticipant, RecurringSchedule, Trip
from carpool.core.session import TripSession
from carpool.errors import CarpoolError, InvalidValueError, NotFoundError

if TYPE_CHECKING:
    from carpool.core.engine import TripEngine

log = logging.getLogger(__name__)

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTHDAYS = tuple(str(d) for d in range(1, 32))

# Far enough to reach every day of month at least once
_SEARCH_DAYS = 400


# ---------------------------------------------------------------------------
# Schedule arithmetic
# ---------------------------------------------------------------------------

def occurrence_key(ts: int, period: str, tz_name: str = "UTC") -> str:
    """Day key of a timestamp: ``Mon``..``Sun`` weekly, ``1``..``31`` monthly."""
    dt = datetime.fromtimestamp(ts, ZoneInfo(tz_name))
    if period == "weekly":
        return WEEKDAYS[dt.weekday()]
    if period == "monthly":
        return str(dt.day)
    raise InvalidValueError("period", "weekly or monthly")


def validate_days(period: str, days: Iterable[str]) -> List[str]:
    allowed = WEEKDAYS if period == "weekly" else MONTHDAYS if period == "monthly" else None
    if allowed is None:
        raise InvalidValueError("period", "weekly or monthly")
    out = [str(d) for d in days]
    for d in out:
        if d not in allowed:
            raise InvalidValueError("days", ", ".join(allowed))
    return out


def next_occurrence(
    start_time: int,
    period: str,
    days: Iterable[str],
    now: int,
    tz_name: str = "UTC",
) -> Optional[int]:
    """
    First occurrence strictly after both *start_time* and *now* whose day key
    is one of *days*, at the same local time of day as *start_time*.

    Returns None when nothing matches (no days, unknown keys, bad period).
    """
    if period not in ("weekly", "monthly"):
        return None
    wanted = {str(d) for d in days}
    if not wanted:
        return None

    tz = ZoneInfo(tz_name)
    base = datetime.fromtimestamp(start_time, tz)
    for i in range(1, _SEARCH_DAYS + 1):
        candidate = datetime.combine(base.date() + timedelta(days=i), base.timetz())
        ts = int(candidate.timestamp())
        if ts <= now:
            continue
        if occurrence_key(ts, period, tz_name) in wanted:
            return ts
    return None


# ---------------------------------------------------------------------------
# Day membership
# ---------------------------------------------------------------------------

def change_participation(
    session: TripSession,
    user_id: str,
    going: bool,
    coordinates: Optional[CoordinateRecord] = None,
    tz_name: str = "UTC",
) -> Optional[RecurringParticipant]:
    """
    Add (going) or remove this trip's day from the user's recurring days.

    A day is only added when the schedule itself runs that day. The joining
    coordinates are kept so the spawner can re-join the user next time.
    """
    trip = session.trip
    if not trip.recurring_id or trip.attributes.start_time is None:
        return None
    schedule = session.repo.fetch_schedule(trip.recurring_id)
    if schedule is None or schedule.closed:
        return None

    rp = session.repo.fetch_recurring_participant(schedule.id, user_id) or RecurringParticipant(
        schedule_id=schedule.id, user_id=user_id
    )
    key = occurrence_key(trip.attributes.start_time, schedule.period, tz_name)
    if going and key not in rp.days and key in schedule.days:
        rp.days.append(key)
    elif not going and key in rp.days:
        rp.days.remove(key)
    rp.period = schedule.period
    if coordinates is not None:
        rp.coordinates = coordinates

    session.defer_write(lambda: session.repo.save_recurring_participant(rp))
    return rp


# ---------------------------------------------------------------------------
# Spawner
# ---------------------------------------------------------------------------

class RecurringSpawner:
    """Creates the next instance of a recurring trip and re-joins its regulars."""

    def __init__(self, engine: "TripEngine", tz_name: str = "UTC",
                 clock: Optional[Callable[[], int]] = None):
        self.engine = engine
        self.repo = engine.repo
        self.tz_name = tz_name
        self.clock = clock or engine.clock

    def spawn(
        self,
        trip_key: str,
        schedule_id: Optional[str] = None,
        relate_to_event: Optional[str] = None,
    ) -> Optional[Trip]:
        """
        Return the trip that is the schedule's upcoming instance.

        *relate_to_event* is passed when a recurring event spawns its own next
        occurrence: a trip not yet linked to any event is that occurrence.
        Otherwise nothing happens until the instance's start time has passed.
        Returns None when no next start time can be computed.
        """
        trip = self.repo.fetch_trip(trip_key)
        if trip is None:
            raise NotFoundError(f"Trip {trip_key} not found")
        schedule = self.repo.fetch_schedule(schedule_id or trip.recurring_id or "")
        if schedule is None:
            raise NotFoundError(f"Trip {trip_key} has no recurring schedule")

        # One spawn per schedule at a time
        with self.engine.locks.hold(f"schedule:{schedule.id}"):
            return self._spawn(trip, schedule, relate_to_event)

    def _spawn(self, trip: Trip, schedule: RecurringSchedule,
               relate_to_event: Optional[str]) -> Optional[Trip]:
        attrs = trip.attributes
        now = self.clock()

        if relate_to_event is not None:
            if trip.related_event is None:
                return trip
        elif now < (attrs.start_time or 0):
            return trip

        # A later instance already exists: it is the one we are after
        for other in reversed(self.repo.trips_for_schedule(schedule.id)):
            if (other.key != trip.key
                    and (other.attributes.start_time or 0) > (attrs.start_time or 0)):
                return other

        new_start = next_occurrence(attrs.start_time or now, schedule.period, schedule.days, now, self.tz_name)
        if new_start is None:
            log.warning("No next occurrence for schedule %s (period=%s days=%s)",
                        schedule.id, schedule.period, schedule.days)
            return None
        new_end = None
        if attrs.start_time is not None and attrs.end_time is not None:
            new_end = new_start + (attrs.end_time - attrs.start_time)

        fields = {
            "title": trip.title,
            "type": attrs.type,
            "from": attrs.origin,
            "to": attrs.destination,
            "start_time": new_start,
            "end_time": new_end,
            "venue": attrs.venue,
            "labels": attrs.labels,
            "people_max": attrs.people_max,
            "detour_max": attrs.detour_max,
            "detour_type": attrs.detour_type,
            "read_level": trip.read_level,
            "write_level": trip.write_level,
            "admin_level": trip.admin_level,
            "recurring_id": schedule.id,
        }
        new_trip = self.engine.create(trip.publisher_id, fields, relate_to=relate_to_event)
        log.info("Spawned %s from %s (schedule %s) starting %d",
                 new_trip.key, trip.key, schedule.id, new_start)

        day = occurrence_key(new_start, schedule.period, self.tz_name)
        for rp in self.repo.recurring_participants(schedule.id):
            if rp.user_id == trip.publisher_id or day not in rp.days:
                continue
            try:
                self.engine.join(new_trip.key, rp.user_id, rp.coordinates)
            except CarpoolError as exc:
                log.warning("Could not re-join %s to %s: %s", rp.user_id, new_trip.key, exc)

        return self.engine.get_trip(new_trip.key)

    def tick(self) -> List[Trip]:
        """Run ``spawn`` on the latest instance of every open schedule."""
        out: List[Trip] = []
        for schedule in self.repo.schedules():
            if schedule.closed:
                continue
            trips = self.repo.trips_for_schedule(schedule.id)
            if not trips:
                continue
            try:
                result = self.spawn(trips[-1].key, schedule.id)
            except CarpoolError as exc:
                log.warning("Spawning for schedule %s failed: %s", schedule.id, exc)
                continue
            if result is not None:
                out.append(result)
        return out

    def set_days(self, schedule_id: str, user_id: str, days: Iterable[str]) -> RecurringParticipant:
        """Store a participant's days; the driver's days become the schedule's."""
        schedule = self.repo.fetch_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError(f"Schedule {schedule_id} not found")
        days = validate_days(schedule.period, days)

        rp = self.repo.fetch_recurring_participant(schedule_id, user_id) or RecurringParticipant(
            schedule_id=schedule_id, user_id=user_id
        )
        rp.days = days
        rp.period = schedule.period
        self.repo.save_recurring_participant(rp)

        # without the driver there is no trip, so riders follow the driver's days
        if user_id == schedule.publisher_id:
            schedule.days = days
            self.repo.save_schedule(schedule)
        return rp

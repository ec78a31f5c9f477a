"""Participant state machine and the trip operations built on it.

Every method works on an open ``TripSession``; the engine facade takes care of
locking, loading and committing.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from carpool.config import Distances
from carpool.core.admission import AdmissionController
from carpool.core.coordinates import CoordinatesIn, CoordinateStore, normalize
from carpool.core.models import (
    CoordinateRecord,
    Location,
    ParticipantExtra,
    RecurringParticipant,
    RecurringSchedule,
    Trip,
    TripAttributes,
)
from carpool.core.notifications import NotificationTrigger
from carpool.core.recurring import change_participation, validate_days
from carpool.core.routing import RouteEngine, waypoint_for
from carpool.core.session import TripSession
from carpool.core.states import (
    ACTIVE_STATES,
    LEAVE_TRANSITIONS,
    DriverState,
    PassengerState,
    Role,
    check_transition,
)
from carpool.errors import (
    InvalidValueError,
    NotAuthorizedError,
    RequiredFieldError,
    StateTransitionError,
    TripAlreadyStartedError,
)

log = logging.getLogger(__name__)

_TRIP_FIELDS = (
    "type", "from", "to", "start_time", "end_time", "people_max", "detour_max",
    "detour_type", "venue", "labels",
)

# closing reason -> terminal state per role
_CLOSING_STATES = {
    "discontinued": {Role.DRIVER: DriverState.DISCONTINUED.value,
                     Role.PASSENGER: PassengerState.DISCONTINUED.value},
    "arrived": {Role.DRIVER: DriverState.COMPLETED.value,
                Role.PASSENGER: PassengerState.ARRIVED.value},
}


def _location(value: Any, field: str) -> Location:
    if isinstance(value, Location):
        return value.model_copy()
    if isinstance(value, CoordinateRecord):
        return value.as_location()
    if not isinstance(value, Mapping):
        raise InvalidValueError(field, "userId, placeId, latitude&longitude, or address")
    try:
        return Location.model_validate(dict(value))
    except ValidationError:
        raise InvalidValueError(field, "userId, placeId, latitude&longitude, or address") from None


def new_trip(driver_id: str, fields: Mapping[str, Any], now: int) -> Trip:
    """Validate creation fields and build an unsaved trip in state ``new``."""
    trip_type = fields.get("type")
    if isinstance(trip_type, str) and trip_type.startswith("Travel/"):
        trip_type = trip_type[len("Travel/"):]
    if trip_type not in ("to", "from"):
        raise InvalidValueError("type", "to or from")
    for f in ("from", "to"):
        if not fields.get(f):
            raise RequiredFieldError(f)
    if trip_type == "to" and not fields.get("end_time"):
        raise RequiredFieldError("end_time")
    if trip_type == "from" and not fields.get("start_time"):
        raise RequiredFieldError("start_time")

    data = {k: fields[k] for k in _TRIP_FIELDS if fields.get(k) is not None}
    data["type"] = trip_type
    data["from"] = _location(fields["from"], "from")
    data["to"] = _location(fields["to"], "to")
    data["state"] = "new"
    try:
        attributes = TripAttributes.model_validate(data)
    except ValidationError as e:
        err = e.errors()[0]
        raise InvalidValueError(".".join(str(p) for p in err["loc"]), err["msg"]) from None

    venue = attributes.venue or attributes.destination.venue
    attributes.venue = venue
    title = fields.get("title")
    if not title:
        title = f"Ride to: {venue}" if trip_type == "to" else f"Ride from: {attributes.origin.venue or venue}"

    return Trip(
        publisher_id=driver_id,
        name=fields.get("name") or uuid.uuid4().hex[:12],
        title=title or "",
        attributes=attributes,
        read_level=fields.get("read_level") or ("none" if attributes.labels else "max"),
        write_level=fields.get("write_level") or ("none" if attributes.labels else "relate"),
        admin_level=fields.get("admin_level") or ("none" if attributes.labels else "invite"),
        recurring_id=fields.get("recurring_id"),
        created_at=now,
    )


class TripStateMachine:
    def __init__(
        self,
        routes: RouteEngine,
        notifications: NotificationTrigger,
        distances: Distances,
        distance_method: str = "haversine",
        tz_name: str = "UTC",
        admission: Optional[AdmissionController] = None,
    ):
        self.routes = routes
        self.notifications = notifications
        self.distances = distances
        self.distance_method = distance_method
        self.tz_name = tz_name
        self.admission = admission or AdmissionController()

    def _store(self, session: TripSession) -> CoordinateStore:
        return CoordinateStore(session.trip.coordinates, self.distance_method)

    def _require_driver(self, session: TripSession, user_id: str) -> None:
        if user_id != session.driver_id:
            raise NotAuthorizedError("Only the driver can do this")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        session: TripSession,
        recurring: Optional[Mapping[str, Any]] = None,
        relate_to: Optional[str] = None,
    ) -> None:
        trip = session.trip
        attrs = trip.attributes
        trip.related_event = relate_to

        result = self.routes.route(session)
        legs = result.legs
        start = legs[0].get("start_location") or {}
        end = legs[-1].get("end_location") or {}
        if "lat" in start and "lng" in start:
            attrs.origin.latitude = float(start["lat"])
            attrs.origin.longitude = float(start["lng"])
        if "lat" in end and "lng" in end:
            attrs.destination.latitude = float(end["lat"])
            attrs.destination.longitude = float(end["lng"])
        session.changed()

        session.subscribe(session.driver_id, ParticipantExtra(
            state=DriverState.PLANNING.value,
            start_time=attrs.start_time,
            end_time=attrs.end_time,
            timestamp=session.clock(),
        ))

        location = attrs.origin if attrs.type == "from" else attrs.destination
        self.notifications.added(session, location, self.distances.subscribe)

        if recurring and not trip.recurring_id:
            self._make_recurring(session, recurring, relate_to)

    def _make_recurring(self, session: TripSession, recurring: Mapping[str, Any],
                        relate_to: Optional[str]) -> None:
        period = recurring.get("period")
        if period not in ("weekly", "monthly"):
            raise InvalidValueError("recurring.period", "weekly or monthly")
        days = validate_days(period, recurring.get("days") or [])

        schedule = RecurringSchedule(
            id=uuid.uuid4().hex[:12],
            publisher_id=session.driver_id,
            period=period,
            days=days,
            parent_event=relate_to,
        )
        driver = RecurringParticipant(
            schedule_id=schedule.id, user_id=session.driver_id, period=period, days=list(days)
        )
        session.trip.recurring_id = schedule.id
        session.defer_write(lambda: session.repo.save_schedule(schedule))
        session.defer_write(lambda: session.repo.save_recurring_participant(driver))

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def set_state(
        self,
        session: TripSession,
        user_id: str,
        state: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move a participant to *state* within its role's table.

        Returns False when the participant is already in *state*. Raises
        StateTransitionError when the move is not allowed.
        """
        p = session.participant(user_id)
        current = p.state
        if current == state:
            return False
        check_transition(session.role_of(user_id), current, state)

        merged = dict(extra or {})
        merged.update(state=state, timestamp=session.clock())
        p.extra = ParticipantExtra.model_validate({**p.extra.model_dump(), **merged})
        session.save_participant(p)

        if state == PassengerState.RIDING.value:
            self._picked_up(session, user_id)

        if state in (PassengerState.WAITING.value, PassengerState.CANCELED.value):
            change_participation(
                session, user_id,
                going=state == PassengerState.WAITING.value,
                coordinates=p.extra.coordinates,
                tz_name=self.tz_name,
            )

        self.notifications.user_state(session, user_id, p.extra.model_dump(mode="json", exclude_none=True))
        return True

    def _picked_up(self, session: TripSession, passenger_id: str) -> None:
        attrs = session.trip.attributes
        attrs.last_pickup = passenger_id
        driver = session.trip.coordinates.get(session.driver_id)
        if driver is not None:
            attrs.origin = driver.as_location()
        session.changed()
        self.routes.route(session)
        self.notifications.pickup(session, passenger_id)

    def start(self, session: TripSession, driver_id: str,
              coordinates: Optional[CoordinatesIn] = None) -> None:
        self._require_driver(session, driver_id)
        p = session.participant(driver_id)
        if p.state != DriverState.PLANNING.value:
            raise StateTransitionError(p.state, DriverState.DRIVING.value)

        attrs = session.trip.attributes
        coords = normalize(coordinates if coordinates is not None else attrs.origin)

        self.set_state(session, driver_id, DriverState.DRIVING.value)
        self.set_coordinates(session, driver_id, coords)

        now = session.clock()
        attrs.origin = coords.as_location()
        attrs.state = "started"
        attrs.start_time = now
        session.changed()

        # fresh traffic data for the estimates
        self.routes.route(session)
        self.notifications.started(session, now)

    def join(self, session: TripSession, passenger_id: str,
             coordinates: Optional[CoordinatesIn] = None) -> bool:
        """Become a waiting passenger, subject to seats and detour budget."""
        if passenger_id == session.driver_id:
            return False
        trip = session.trip
        attrs = trip.attributes
        if attrs.state == "started":
            raise TripAlreadyStartedError()
        coords = normalize(coordinates) if coordinates is not None else None

        active = [
            p for p in session.participants()
            if p.state in ACTIVE_STATES and p.user_id != session.driver_id
        ]
        if any(p.user_id == passenger_id for p in active):
            return False
        self.admission.check_capacity(len(active), attrs.people_max)

        if attrs.detour_max and attrs.detour_type and attrs.start_time and attrs.end_time:
            if coords is None:
                raise RequiredFieldError("coordinates")
            waypoints = []
            for p in active:
                c = trip.coordinates.get(p.user_id)
                if c is not None:
                    waypoints.append(waypoint_for(p.user_id, c))
            waypoints.append(waypoint_for(passenger_id, coords))

            candidate = self.routes.route(session, waypoints, persist=False)
            baseline_distance = trip.directions.distance_m if trip.directions else 0
            self.admission.check_detour(
                attrs.end_time - attrs.start_time,
                baseline_distance,
                candidate.duration_s,
                candidate.distance_m,
                attrs.detour_max,
                attrs.detour_type,
            )

        if coords is not None:
            # not started yet, so no proximity work; the full route below covers it
            self._store(session).set(passenger_id, coords)
            session.changed()

        session.subscribe(passenger_id)
        self.set_state(session, passenger_id, PassengerState.WAITING.value, {
            "start_time": attrs.start_time,
            "end_time": attrs.end_time,
            "coordinates": coords,
        })
        self.routes.route(session)
        return True

    def leave(self, session: TripSession, passenger_id: str) -> bool:
        """Stop being a passenger; returns whether the state changed."""
        if passenger_id == session.driver_id:
            raise NotAuthorizedError("The driver can't leave the trip")
        p = session.participant(passenger_id)

        changed = False
        target = LEAVE_TRANSITIONS.get(p.state or "")
        if target is not None:
            changed = self.set_state(session, passenger_id, target)

        session.unsubscribe(passenger_id)
        self.set_coordinates(session, passenger_id, None)
        session.on_commit(lambda: self.notifications.forget(session.key, passenger_id))
        return changed

    def _close(self, session: TripSession, driver_id: str, reason: str) -> None:
        self._require_driver(session, driver_id)
        attrs = session.trip.attributes
        attrs.state = "ended"
        attrs.reason = reason
        now = session.clock()
        for p in session.participants():
            state = _CLOSING_STATES[reason][session.role_of(p.user_id)]
            p.extra = p.extra.model_copy(update={"state": state, "timestamp": now, "reason": reason})
            session.save_participant(p)
        session.close(driver_id)
        session.on_commit(lambda: self.notifications.forget(session.key))

    def discontinue(self, session: TripSession, driver_id: str) -> None:
        self._close(session, driver_id, "discontinued")
        schedule_id = session.trip.recurring_id
        if schedule_id:
            schedule = session.repo.fetch_schedule(schedule_id)
            if schedule is not None and not schedule.closed:
                schedule.closed = True
                session.defer_write(lambda: session.repo.save_schedule(schedule))

    def completed(self, session: TripSession, driver_id: str) -> None:
        self._close(session, driver_id, "arrived")

    def set_estimates(
        self,
        session: TripSession,
        driver_id: str,
        minutes: float,
        km: float,
        legs: List[Dict[str, Any]],
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> None:
        """Store the driver app's duration/distance and per-passenger pickup times."""
        self._require_driver(session, driver_id)
        pickups = []
        for i, leg in enumerate(legs):
            uid = leg.get("user_id") or leg.get("userId")
            if not uid:
                continue
            if leg.get("timestamp") is None:
                raise RequiredFieldError(f"legs.{i}.timestamp")
            pickups.append((session.participant(uid), int(leg["timestamp"])))

        attrs = session.trip.attributes
        if start_time:
            attrs.start_time = int(start_time)
        if end_time:
            attrs.end_time = int(end_time)
        attrs.minutes = minutes
        attrs.km = km
        attrs.legs = list(legs)
        session.changed()

        for p, ts in pickups:
            p.extra.pick_up_time = ts
            session.save_participant(p)

    # ------------------------------------------------------------------
    # Coordinates and proximity
    # ------------------------------------------------------------------

    def set_coordinates(
        self,
        session: TripSession,
        user_id: Union[str, Mapping[str, Optional[CoordinatesIn]]],
        coordinates: Optional[CoordinatesIn] = None,
    ) -> None:
        """
        Write one user's location (or a ``{user_id: coordinates}`` batch).

        ``None`` removes the entry and recomputes the route without that user;
        proximity checks only run for written locations.
        """
        if isinstance(user_id, Mapping):
            changes = dict(user_id)
        else:
            changes = {user_id: coordinates}

        store = self._store(session)
        store.update(changes)
        session.changed()

        written = [uid for uid, c in changes.items() if c is not None]
        removed = len(written) != len(changes)

        rerouted = False
        if written:
            rerouted = self._proximity(session, store, written)
        if removed and not rerouted:
            self.routes.route(session)

    def _proximity(self, session: TripSession, store: CoordinateStore, written: List[str]) -> bool:
        """Arriving / pickup / finishing / off-route checks. True if rerouted."""
        d = self.distances
        trip = session.trip
        attrs = trip.attributes
        driver_id = session.driver_id
        started = attrs.state == "started"

        waiting = [p.user_id for p in session.participants()
                   if p.state == PassengerState.WAITING.value]
        closest, distance = store.nearest(driver_id, waiting)

        if started and closest is not None:
            if distance < d.arriving:
                self.notifications.arriving(session, closest)
            if distance < d.pickup:
                self.set_state(session, closest, PassengerState.RIDING.value)

        if started and driver_id in written and attrs.destination.has_point:
            to_finish = store.distance_to(driver_id, attrs.destination.latitude, attrs.destination.longitude)
            if to_finish is not None and to_finish <= d.arriving:
                self.notifications.finishing(session)

        if trip.directions is None:
            return False
        points = trip.directions.polyline()
        off_route = False
        for uid in written:
            deviation = store.distance_to_polyline(uid, points)
            if deviation is not None and deviation > d.route:
                off_route = True
                break
        if not off_route:
            return False

        if started:
            driver = store.get(driver_id)
            if driver is not None:
                attrs.origin = driver.as_location()
                session.changed()
        log.info("%s is off route on %s, rerouting", ", ".join(written), session.key)
        return self.routes.reroute_if_due(session) is not None

"""Route (re)computation for a trip."""
from __future__ import annotations

import logging
from math import isclose
from typing import Any, Dict, List, Optional

from carpool.core.coordinates import CoordinateStore
from carpool.core.models import CoordinateRecord, Location, RouteRequest, RouteResult, Waypoint
from carpool.core.session import TripSession
from carpool.core.states import PassengerState
from carpool.errors import InvalidValueError, RoutingError
from carpool.providers.base import RouteProvider

log = logging.getLogger(__name__)

# Step end points are compared with the stored coordinates at ~1 cm
_MATCH_TOL_DEG = 1e-7


def _latlng(lat: float, lng: float) -> str:
    return f"{lat},{lng}"


def waypoint_for(user_id: str, coordinates: CoordinateRecord, stopover: bool = True) -> Waypoint:
    return Waypoint(
        location=_latlng(coordinates.latitude, coordinates.longitude),
        stopover=stopover,
        user_id=user_id,
    )


class RouteEngine:
    """
    Builds the waypoint sequence for a trip, asks the RouteProvider for
    directions and turns the answer into pickups and time estimates.

    ``route(persist=True)`` writes the cached directions and the new
    start/end times onto the session's trip only after the provider answered
    with at least one leg; a failure leaves the trip exactly as it was.
    """

    def __init__(
        self,
        provider: RouteProvider,
        reroute_min_interval_s: int = 30,
        distance_method: str = "haversine",
        travel_mode: str = "driving",
    ):
        self.provider = provider
        self.reroute_min_interval_s = reroute_min_interval_s
        self.distance_method = distance_method
        self.travel_mode = travel_mode

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def resolve(self, session: TripSession, location: Location, field: str) -> str:
        """Location -> provider location string."""
        if location.user_id:
            c = session.trip.coordinates.get(location.user_id)
            if c is None:
                raise InvalidValueError(field, "a participant with known coordinates")
            return _latlng(c.latitude, c.longitude)
        if location.place_id:
            return f"place_id:{location.place_id}"
        if location.has_point:
            return _latlng(location.latitude, location.longitude)
        if location.address:
            return location.address
        raise InvalidValueError(field, "userId, placeId, latitude&longitude, or address")

    def derive_waypoints(self, session: TripSession) -> List[Waypoint]:
        """Current coordinate map as waypoints: driver first, riders skipped."""
        store = CoordinateStore(session.trip.coordinates, self.distance_method)
        out: List[Waypoint] = []
        for user_id, record in store.ordered(first=session.driver_id):
            p = session.participant(user_id, required=False)
            if p is not None and p.state == PassengerState.RIDING.value:
                continue
            out.append(waypoint_for(user_id, record, stopover=user_id != session.driver_id))
        return out

    def build_request(
        self,
        session: TripSession,
        waypoints: Optional[List[Waypoint]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> RouteRequest:
        options = options or {}
        attrs = session.trip.attributes
        start_time = options.get("start_time", attrs.start_time)
        end_time = options.get("end_time", attrs.end_time)

        departure = arrival = None
        if attrs.state == "started" or attrs.type == "from" or not end_time:
            departure = start_time
        else:
            arrival = end_time

        return RouteRequest(
            origin=self.resolve(session, attrs.origin, "from"),
            destination=self.resolve(session, attrs.destination, "to"),
            waypoints=waypoints if waypoints else self.derive_waypoints(session),
            optimize=options.get("optimize", True),
            travel_mode=options.get("travel_mode", self.travel_mode),
            departure_time=departure,
            arrival_time=arrival,
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(
        self,
        session: TripSession,
        waypoints: Optional[List[Waypoint]] = None,
        options: Optional[Dict[str, Any]] = None,
        persist: bool = True,
    ) -> RouteResult:
        request = self.build_request(session, waypoints, options)
        response = self.provider.directions(request)

        routes = list(response.get("routes") or [])
        legs = (routes[0].get("legs") if routes else None) or []
        if not legs:
            raise RoutingError("no routes found")

        pickups = self._pickups(session, legs)
        duration = sum(int((leg.get("duration") or {}).get("value", 0)) for leg in legs)
        distance = sum(int((leg.get("distance") or {}).get("value", 0)) for leg in legs)

        routes[0] = dict(routes[0], pickups=pickups)
        result = RouteResult(
            routes=routes,
            request=request,
            pickups=pickups,
            duration_s=duration,
            distance_m=distance,
            computed_at=session.clock(),
        )
        if not persist:
            return result

        self._update_times(session, duration)
        session.trip.directions = result
        session.changed()
        log.info("Routed %s: %d leg(s), %ds, %dm, pickups=%s",
                 session.key, len(legs), duration, distance, pickups)
        return result

    def reroute_if_due(self, session: TripSession) -> Optional[RouteResult]:
        """Deviation-triggered reroute, at most once per ``reroute_min_interval_s``."""
        cached = session.trip.directions
        if cached is not None:
            age = session.clock() - cached.computed_at
            if age < self.reroute_min_interval_s:
                log.debug("Reroute of %s skipped, directions are %ds old", session.key, age)
                return None
        return self.route(session)

    # ------------------------------------------------------------------
    # Result parsing
    # ------------------------------------------------------------------

    def _pickups(self, session: TripSession, legs: List[Dict[str, Any]]) -> List[str]:
        """Passenger ids in the order the route reaches their locations."""
        candidates = [(uid, c) for uid, c in session.trip.coordinates.items() if uid != session.driver_id]
        pickups: List[str] = []
        for leg in legs:
            for step in leg.get("steps") or []:
                end = step.get("end_location") or {}
                try:
                    lat, lng = float(end["lat"]), float(end["lng"])
                except (KeyError, TypeError, ValueError):
                    continue
                for uid, c in candidates:
                    # no break: several passengers may share a pickup point
                    if (uid not in pickups
                            and isclose(c.latitude, lat, abs_tol=_MATCH_TOL_DEG)
                            and isclose(c.longitude, lng, abs_tol=_MATCH_TOL_DEG)):
                        pickups.append(uid)
        return pickups

    def _update_times(self, session: TripSession, duration: int) -> None:
        attrs = session.trip.attributes
        now = session.clock()

        if attrs.state == "started":
            attrs.end_time = (attrs.start_time or now) + duration
            return

        if attrs.type == "to" and attrs.end_time:
            if attrs.end_time - duration > now:
                attrs.start_time = attrs.end_time - duration
            else:
                # too late to arrive on time: best you can do is leave now
                attrs.start_time = now
                attrs.end_time = now + duration
        elif attrs.type == "from" and attrs.start_time:
            if attrs.start_time + duration > now:
                attrs.end_time = attrs.start_time + duration
            else:
                attrs.start_time = now
                attrs.end_time = now + duration

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from carpool.core.geo import haversine_m
from carpool.core.models import RouteRequest
from carpool.providers.base import RouteProvider


def _parse_latlng(text: str) -> Optional[Tuple[float, float]]:
    try:
        lat_s, lng_s = text.split(",", 1)
        return float(lat_s), float(lng_s)
    except ValueError:
        return None


def _loc(p: Tuple[float, float]) -> Dict[str, float]:
    return {"lat": p[0], "lng": p[1]}


class MockRouteProvider(RouteProvider):
    """
    Deterministic fake directions so the engine runs end-to-end without APIs.

    Every leg is a straight line at a constant speed, waypoints are visited in
    the given order (``optimize`` is ignored) and each leg has a single step
    ending on the leg's end point. Non-coordinate locations yield no route.
    """

    def __init__(self, speed_mps: float = 12.5):
        self.speed_mps = speed_mps
        self.requests: List[RouteRequest] = []

    def directions(self, request: RouteRequest) -> Dict[str, Any]:
        self.requests.append(request)

        raw = [request.origin] + [w.location for w in request.waypoints] + [request.destination]
        pts = [_parse_latlng(t) for t in raw]
        if any(p is None for p in pts):
            return {"status": "NOT_FOUND", "routes": []}

        # Pass-through points do not split legs
        stops = [pts[0]]
        for wp, p in zip(request.waypoints, pts[1:-1]):
            if wp.stopover:
                stops.append(p)
        stops.append(pts[-1])

        legs = []
        for a, b in zip(stops, stops[1:]):
            meters = int(round(haversine_m(a[0], a[1], b[0], b[1])))
            seconds = int(round(meters / self.speed_mps))
            legs.append({
                "start_location": _loc(a),
                "end_location": _loc(b),
                "distance": {"value": meters, "text": f"{meters / 1000:.1f} km"},
                "duration": {"value": seconds, "text": f"{seconds // 60} mins"},
                "steps": [{
                    "start_location": _loc(a),
                    "end_location": _loc(b),
                    "distance": {"value": meters},
                    "duration": {"value": seconds},
                    "instructions": "Head straight",
                }],
            })
        return {"status": "OK", "routes": [{"legs": legs}]}

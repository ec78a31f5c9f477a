"""Distance helpers and route polyline geometry."""
from __future__ import annotations

from math import atan2, cos, radians, sin, sqrt
from typing import Any, Dict, List, Optional, Tuple

import polyline
from shapely.geometry import LineString, Point
from shapely.ops import nearest_points

LatLon = Tuple[float, float]

_EARTH_RADIUS_M = 6_371_000.0


# ---------------------------------------------------------------------------
# Point distances
# ---------------------------------------------------------------------------

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS-84 points."""
    lat1r, lon1r, lat2r, lon2r = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2r - lat1r
    dlon = lon2r - lon1r
    a = sin(dlat / 2) ** 2 + cos(lat1r) * cos(lat2r) * sin(dlon / 2) ** 2
    return _EARTH_RADIUS_M * 2 * atan2(sqrt(a), sqrt(1 - a))


def planar_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Equirectangular approximation, fine below a few tens of km."""
    x = radians(lon2 - lon1) * cos(radians((lat1 + lat2) / 2))
    y = radians(lat2 - lat1)
    return _EARTH_RADIUS_M * sqrt(x * x + y * y)


def distance_m(
    lat1: float, lon1: float, lat2: float, lon2: float, method: str = "haversine"
) -> float:
    if method == "planar":
        return planar_m(lat1, lon1, lat2, lon2)
    if method == "haversine":
        return haversine_m(lat1, lon1, lat2, lon2)
    raise ValueError(f"Unknown distance method: '{method}' (supported: haversine, planar)")


# ---------------------------------------------------------------------------
# Polylines
# ---------------------------------------------------------------------------

def decode_polyline(encoded: str, precision: int = 5) -> List[LatLon]:
    """Decode a Google encoded polyline into [(lat, lon), ...]."""
    return [(lat, lon) for lat, lon in polyline.decode(encoded, precision)]


def _latlng(loc: Optional[Dict[str, Any]]) -> Optional[LatLon]:
    if not loc:
        return None
    try:
        return float(loc["lat"]), float(loc["lng"])
    except (KeyError, TypeError, ValueError):
        return None


def route_polyline(route: Dict[str, Any]) -> List[LatLon]:
    """
    Geometry of one provider route.

    Uses the overview polyline when the provider sent one, otherwise stitches
    the per-step polylines (or step endpoints) together.
    """
    overview = (route.get("overview_polyline") or {}).get("points")
    if overview:
        return decode_polyline(overview)

    pts: List[LatLon] = []
    for leg in route.get("legs") or []:
        for step in leg.get("steps") or []:
            encoded = (step.get("polyline") or {}).get("points")
            if encoded:
                pts.extend(decode_polyline(encoded))
                continue
            for key in ("start_location", "end_location"):
                p = _latlng(step.get(key))
                if p is not None:
                    pts.append(p)
        if not leg.get("steps"):
            for key in ("start_location", "end_location"):
                p = _latlng(leg.get(key))
                if p is not None:
                    pts.append(p)
    return pts


def nearest_on_polyline(lat: float, lon: float, points: List[LatLon]) -> Optional[LatLon]:
    """Closest point of the polyline to (lat, lon), in lat/lon degrees."""
    if not points:
        return None
    if len(points) == 1:
        return points[0]
    line = LineString([(p_lon, p_lat) for p_lat, p_lon in points])
    _, nearest = nearest_points(Point(lon, lat), line)
    return nearest.y, nearest.x


def distance_to_polyline_m(
    lat: float, lon: float, points: List[LatLon], method: str = "haversine"
) -> Optional[float]:
    closest = nearest_on_polyline(lat, lon, points)
    if closest is None:
        return None
    return distance_m(lat, lon, closest[0], closest[1], method)

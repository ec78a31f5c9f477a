"""Per-trip participant locations and the proximity queries built on them."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from carpool.core import geo
from carpool.core.models import CoordinateRecord, Location
from carpool.errors import InvalidValueError, RequiredFieldError

CoordinatesIn = Union[CoordinateRecord, Location, Mapping[str, Any]]


def normalize(coordinates: CoordinatesIn, field: str = "coordinates") -> CoordinateRecord:
    """Validate and coerce one raw location into a CoordinateRecord.

    latitude, longitude, heading and speed become floats; anything missing or
    non-numeric is reported as a boundary error before any state changes.
    """
    if isinstance(coordinates, CoordinateRecord):
        return coordinates
    if isinstance(coordinates, Location):
        coordinates = coordinates.model_dump(exclude_none=True)
    if not isinstance(coordinates, Mapping):
        raise InvalidValueError(field, "an object with latitude and longitude")
    for f in ("latitude", "longitude"):
        if coordinates.get(f) in (None, ""):
            raise RequiredFieldError(f"{field}.{f}")
    try:
        return CoordinateRecord.model_validate(dict(coordinates))
    except ValidationError:
        raise InvalidValueError(field, "numeric latitude, longitude, heading and speed") from None


class CoordinateStore:
    """Typed view over a trip's ``user_id -> CoordinateRecord`` map.

    The store mutates the mapping it was given, so wrapping ``trip.coordinates``
    edits the trip in place.
    """

    def __init__(self, records: Dict[str, CoordinateRecord], method: str = "haversine"):
        self._records = records
        self.method = method

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, user_id: str) -> Optional[CoordinateRecord]:
        return self._records.get(user_id)

    def set(self, user_id: str, coordinates: CoordinatesIn) -> CoordinateRecord:
        record = normalize(coordinates)
        self._records[user_id] = record
        return record

    def remove(self, user_id: str) -> bool:
        return self._records.pop(user_id, None) is not None

    def update(self, changes: Mapping[str, Optional[CoordinatesIn]]) -> None:
        """Apply several writes at once; ``None`` removes that user's entry.

        Every value is validated first so a bad entry leaves the map untouched.
        """
        normalized = {
            uid: (None if c is None else normalize(c, f"coordinates.{uid}"))
            for uid, c in changes.items()
        }
        for uid, record in normalized.items():
            if record is None:
                self._records.pop(uid, None)
            else:
                self._records[uid] = record

    def ordered(self, first: Optional[str] = None) -> List[Tuple[str, CoordinateRecord]]:
        """All entries, with *first* (usually the driver) moved to the front."""
        items = list(self._records.items())
        if first is not None and first in self._records:
            items = [(first, self._records[first])] + [(k, v) for k, v in items if k != first]
        return items

    def as_dict(self) -> Dict[str, CoordinateRecord]:
        return dict(self._records)

    # ---- proximity ----

    def distance_to(self, user_id: str, latitude: float, longitude: float) -> Optional[float]:
        c = self._records.get(user_id)
        if c is None:
            return None
        return geo.distance_m(c.latitude, c.longitude, latitude, longitude, self.method)

    def distance_between(self, a: str, b: str) -> Optional[float]:
        cb = self._records.get(b)
        if cb is None:
            return None
        return self.distance_to(a, cb.latitude, cb.longitude)

    def nearest(self, origin_id: str, candidates: Iterable[str]) -> Tuple[Optional[str], Optional[float]]:
        """Closest candidate (with a known location) to *origin_id*."""
        best_id: Optional[str] = None
        best: Optional[float] = None
        if origin_id not in self._records:
            return None, None
        for uid in candidates:
            d = self.distance_between(origin_id, uid)
            if d is None:
                continue
            if best is None or d < best:
                best_id, best = uid, d
        return best_id, best

    def distance_to_polyline(self, user_id: str, points: List[geo.LatLon]) -> Optional[float]:
        c = self._records.get(user_id)
        if c is None:
            return None
        return geo.distance_to_polyline_m(c.latitude, c.longitude, points, self.method)

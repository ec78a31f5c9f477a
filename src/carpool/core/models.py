from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carpool.core import geo


class Location(BaseModel):
    """A place a route can start, end or stop at.

    Exactly one way of addressing it is used when building a route request,
    checked in this order: participant reference, place id, lat/lng, free text.
    """

    user_id: Optional[str] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    venue: Optional[str] = None
    heading: Optional[float] = None
    speed: Optional[float] = None

    @property
    def has_point(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class CoordinateRecord(BaseModel):
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    address: Optional[str] = None

    def as_location(self) -> Location:
        return Location(**self.model_dump())


class TripAttributes(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["to", "from"]
    state: Literal["new", "started", "ended"] = "new"
    reason: Optional[str] = None
    origin: Location = Field(alias="from")
    destination: Location = Field(alias="to")
    start_time: Optional[int] = None   # unix seconds
    end_time: Optional[int] = None
    people_max: int = 0
    detour_max: float = 0
    detour_type: Optional[Literal["minutes", "kilometers", "miles"]] = None
    venue: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    last_pickup: Optional[str] = None

    # Client-side estimates pushed back by the driver's app
    minutes: Optional[float] = None
    km: Optional[float] = None
    legs: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _strip_prefix(cls, v: Any) -> Any:
        if isinstance(v, str) and v.startswith("Travel/"):
            return v[len("Travel/"):]
        return v


class Waypoint(BaseModel):
    location: str
    stopover: bool = True
    user_id: Optional[str] = None


class RouteRequest(BaseModel):
    origin: str
    destination: str
    waypoints: List[Waypoint] = Field(default_factory=list)
    optimize: bool = True
    travel_mode: str = "driving"
    departure_time: Optional[int] = None
    arrival_time: Optional[int] = None


class RouteResult(BaseModel):
    """Cached outcome of the last successful route computation."""

    routes: List[Dict[str, Any]]
    request: RouteRequest
    pickups: List[str] = Field(default_factory=list)
    duration_s: int = 0
    distance_m: int = 0
    computed_at: int = 0

    @property
    def legs(self) -> List[Dict[str, Any]]:
        if not self.routes:
            return []
        return self.routes[0].get("legs") or []

    def polyline(self) -> List[geo.LatLon]:
        if not self.routes:
            return []
        return geo.route_polyline(self.routes[0])


class Trip(BaseModel):
    publisher_id: str
    name: str
    title: str = ""
    attributes: TripAttributes
    coordinates: Dict[str, CoordinateRecord] = Field(default_factory=dict)
    directions: Optional[RouteResult] = None

    # Access levels are copied verbatim onto recurring instances
    read_level: str = "max"
    write_level: str = "relate"
    admin_level: str = "invite"

    recurring_id: Optional[str] = None
    related_event: Optional[str] = None
    created_at: int = 0
    closed: bool = False
    closed_by: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.publisher_id}:{self.name}"

    @property
    def driver_id(self) -> str:
        return self.publisher_id


class ParticipantExtra(BaseModel):
    # Callers may attach their own keys (notes, ETA hints) to a state change
    model_config = ConfigDict(extra="allow")

    state: Optional[str] = None
    timestamp: Optional[int] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    coordinates: Optional[CoordinateRecord] = None
    pick_up_time: Optional[int] = None
    reason: Optional[str] = None


class Participant(BaseModel):
    trip_key: str
    user_id: str
    participating: bool = True
    extra: ParticipantExtra = Field(default_factory=ParticipantExtra)

    @property
    def state(self) -> Optional[str]:
        return self.extra.state


class RecurringSchedule(BaseModel):
    id: str
    publisher_id: str
    period: Literal["weekly", "monthly"]
    days: List[str] = Field(default_factory=list)
    parent_event: Optional[str] = None
    closed: bool = False


class RecurringParticipant(BaseModel):
    schedule_id: str
    user_id: str
    period: Optional[str] = None
    days: List[str] = Field(default_factory=list)
    coordinates: Optional[CoordinateRecord] = None


class TripEvent(BaseModel):
    type: str
    trip: str
    by_user_id: str
    instructions: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int = 0

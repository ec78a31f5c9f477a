"""Trip lifecycle endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from carpool.auth import get_current_user
from carpool.core.engine import TripEngine
from carpool.core.models import CoordinateRecord, Location, Participant, Trip
from carpool.deps import get_engine
from carpool.errors import RequiredFieldError

router = APIRouter(prefix="/trips", tags=["trips"])


class RecurringIn(BaseModel):
    period: Literal["weekly", "monthly"]
    days: List[str] = Field(..., min_length=1)


class TripCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    origin: Location = Field(alias="from")
    destination: Location = Field(alias="to")
    people_max: int = Field(..., ge=0)
    venue: Optional[str] = None
    detour_max: Optional[float] = None
    detour_type: Optional[Literal["minutes", "kilometers", "miles"]] = None
    arrive_time: Optional[int] = Field(default=None, description="Unix time the 'to' trip should arrive")
    depart_time: Optional[int] = Field(default=None, description="Unix time the 'from' trip should start")
    labels: List[str] = []
    recurring: Optional[RecurringIn] = None
    relate_to: Optional[str] = None
    offer_from_too: bool = False


class TripOut(BaseModel):
    trip: Trip
    participant: Optional[Participant] = None


class ActionOut(TripOut):
    changed: bool = True


class JoinIn(BaseModel):
    coordinates: Optional[CoordinateRecord] = None


class StartIn(BaseModel):
    coordinates: Optional[CoordinateRecord] = None


class StateIn(BaseModel):
    state: str
    user_id: Optional[str] = None
    extra: Dict[str, Any] = {}


class CoordinatesIn(BaseModel):
    coordinates: Optional[CoordinateRecord] = None
    user_id: Optional[str] = None


class EstimatesIn(BaseModel):
    minutes: float
    km: float
    legs: List[Dict[str, Any]]
    start_time: Optional[int] = None
    end_time: Optional[int] = None


def _key(publisher_id: str, name: str) -> str:
    return f"{publisher_id}:{name}"


def _out(engine: TripEngine, key: str, user_id: str, changed: Optional[bool] = None):
    trip = engine.get_trip(key)
    participant = engine.repo.fetch_participant(key, user_id)
    if changed is None:
        return TripOut(trip=trip, participant=participant)
    return ActionOut(trip=trip, participant=participant, changed=changed)


@router.post("", response_model=TripOut, status_code=201)
def create_trip(
    body: TripCreate,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    venue = body.venue or body.destination.venue
    if not venue:
        raise RequiredFieldError("venue")
    if body.offer_from_too and not body.depart_time:
        raise RequiredFieldError("depart_time")

    fields: Dict[str, Any] = {
        "type": body.type,
        "from": body.origin,
        "to": body.destination,
        "venue": venue,
        "people_max": body.people_max,
        "detour_max": body.detour_max,
        "detour_type": body.detour_type,
        "labels": body.labels,
    }
    if body.type in ("to", "Travel/to"):
        fields["end_time"] = body.arrive_time
    else:
        fields["start_time"] = body.depart_time

    recurring = body.recurring.model_dump() if body.recurring else None
    trip = engine.create(user_id, fields, relate_to=body.relate_to, recurring=recurring)

    if body.offer_from_too:
        back = dict(fields, type="from", start_time=body.depart_time, end_time=None,
                    title=f"Ride from: {venue}")
        back["from"], back["to"] = fields["to"], fields["from"]
        engine.create(user_id, back, relate_to=body.relate_to, recurring=recurring)

    return _out(engine, trip.key, user_id)


@router.get("/participating", response_model=List[Trip])
def participating(
    from_time: Optional[int] = None,
    until_time: Optional[int] = None,
    state: Optional[str] = Query(default=None, description="Comma-separated participant states"),
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    states = [s for s in state.split(",") if s] if state else None
    return engine.participating(user_id, from_time, until_time, states)


@router.get("/{publisher_id}/{name}", response_model=TripOut)
def get_trip(
    publisher_id: str,
    name: str,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    return _out(engine, _key(publisher_id, name), user_id)


@router.post("/{publisher_id}/{name}/join", response_model=ActionOut)
def join_trip(
    publisher_id: str,
    name: str,
    body: JoinIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    changed = engine.join(key, user_id, body.coordinates)
    return _out(engine, key, user_id, changed)


@router.post("/{publisher_id}/{name}/leave", response_model=ActionOut)
def leave_trip(
    publisher_id: str,
    name: str,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    changed = engine.leave(key, user_id)
    return _out(engine, key, user_id, changed)


@router.post("/{publisher_id}/{name}/start", response_model=TripOut)
def start_trip(
    publisher_id: str,
    name: str,
    body: StartIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    engine.start(key, user_id, body.coordinates)
    return _out(engine, key, user_id)


@router.post("/{publisher_id}/{name}/discontinue", response_model=TripOut)
def discontinue_trip(
    publisher_id: str,
    name: str,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    engine.discontinue(key, user_id)
    return _out(engine, key, user_id)


@router.post("/{publisher_id}/{name}/complete", response_model=TripOut)
def complete_trip(
    publisher_id: str,
    name: str,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    engine.completed(key, user_id)
    return _out(engine, key, user_id)


@router.post("/{publisher_id}/{name}/state", response_model=ActionOut)
def set_state(
    publisher_id: str,
    name: str,
    body: StateIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    target = body.user_id or user_id
    changed = engine.set_state(key, target, body.state, body.extra, acting_user_id=user_id)
    return _out(engine, key, target, changed)


@router.post("/{publisher_id}/{name}/coordinates", response_model=TripOut)
def set_coordinates(
    publisher_id: str,
    name: str,
    body: CoordinatesIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    target = body.user_id or user_id
    engine.set_coordinates(key, target, body.coordinates, acting_user_id=user_id)
    return _out(engine, key, target)


@router.put("/{publisher_id}/{name}/estimates", response_model=TripOut)
def set_estimates(
    publisher_id: str,
    name: str,
    body: EstimatesIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    key = _key(publisher_id, name)
    engine.set_estimates(key, user_id, body.minutes, body.km, body.legs, body.start_time, body.end_time)
    return _out(engine, key, user_id)

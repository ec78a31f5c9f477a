"""Recurring schedule endpoints."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from carpool.auth import get_current_user
from carpool.core.engine import TripEngine
from carpool.core.models import RecurringParticipant, Trip
from carpool.deps import get_engine
from carpool.errors import NotAuthorizedError, NotFoundError

router = APIRouter(prefix="/recurring", tags=["recurring"])


class SpawnIn(BaseModel):
    relate_to_event: Optional[str] = None


class SpawnOut(BaseModel):
    trip: Optional[Trip] = None


class DaysIn(BaseModel):
    days: List[str] = Field(default_factory=list)


@router.post("/{schedule_id}/spawn", response_model=SpawnOut)
def spawn(
    schedule_id: str,
    body: SpawnIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    schedule = engine.repo.fetch_schedule(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Schedule {schedule_id} not found")
    if schedule.publisher_id != user_id:
        raise NotAuthorizedError()
    trips = engine.repo.trips_for_schedule(schedule_id)
    if not trips:
        raise NotFoundError(f"Schedule {schedule_id} has no trips")
    trip = engine.spawner.spawn(trips[-1].key, schedule_id, body.relate_to_event)
    return SpawnOut(trip=trip)


@router.put("/{schedule_id}/days", response_model=RecurringParticipant)
def set_days(
    schedule_id: str,
    body: DaysIn,
    user_id: str = Depends(get_current_user),
    engine: TripEngine = Depends(get_engine),
):
    return engine.spawner.set_days(schedule_id, user_id, body.days)

from __future__ import annotations

import time
from typing import Any, Dict

import pytest

from carpool.config import Settings
from carpool.core.engine import TripEngine
from carpool.core.models import RouteRequest
from carpool.core.notifications import InMemoryEventBus
from carpool.providers.base import RouteProvider
from carpool.providers.mock import MockRouteProvider
from carpool.repository import InMemoryRepository

# Thursday 2026-01-01 09:00 UTC
T0 = 1767258000

ORIGIN = {"latitude": 40.0, "longitude": -75.0, "venue": "Home"}
DESTINATION = {"latitude": 40.1, "longitude": -75.0, "venue": "Stadium"}

# Straight north-south line at the mock's 12.5 m/s
ROUTE_M = 11119
ROUTE_S = 890


class Clock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


class SwitchableProvider(RouteProvider):
    """Mock routes until ``fail`` is set, then an empty answer. ``delay_s`` simulates latency."""

    def __init__(self) -> None:
        self.inner = MockRouteProvider()
        self.fail = False
        self.delay_s = 0.0

    @property
    def requests(self):
        return self.inner.requests

    def directions(self, request: RouteRequest) -> Dict[str, Any]:
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.fail:
            self.inner.requests.append(request)
            return {"status": "ZERO_RESULTS", "routes": []}
        return self.inner.directions(request)


@pytest.fixture
def clock() -> Clock:
    return Clock(T0)


@pytest.fixture
def settings() -> Settings:
    return Settings(redis_url="", jwt_secret="test-secret-0123456789abcdef0123456789", timezone="UTC")


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository(names={"p1": "Pat", "p2": "Sam"})


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def provider() -> SwitchableProvider:
    return SwitchableProvider()


@pytest.fixture
def engine(repo, provider, bus, settings, clock) -> TripEngine:
    return TripEngine(repo, provider, bus=bus, settings=settings, clock=clock)


def trip_fields(**overrides: Any) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "type": "to",
        "from": dict(ORIGIN),
        "to": dict(DESTINATION),
        "end_time": T0 + 3600,
        "people_max": 3,
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def make_trip(engine):
    def _make(driver_id: str = "d1", **overrides: Any):
        return engine.create(driver_id, trip_fields(**overrides))
    return _make


def at(lat: float, lon: float = -75.0) -> Dict[str, float]:
    return {"latitude": lat, "longitude": lon}

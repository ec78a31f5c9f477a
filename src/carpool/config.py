"""Centralized settings for the carpool trip engine."""
from __future__ import annotations

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class Distances(BaseModel):
    """Proximity thresholds in metres."""

    arriving: float
    pickup: float
    route: float
    subscribe: float


class Settings(BaseSettings):
    model_config = {"env_prefix": "CARPOOL_"}

    # Redis: empty string means disabled
    redis_url: str = ""

    # Bearer tokens (HS256)
    jwt_secret: str = ""
    jwt_audience: str = "authenticated"
    jwt_leeway_s: int = 0

    # Directions service
    route_provider: str = "google"    # "google" | "mock"
    google_api_key: str = ""
    directions_url: str = "https://maps.googleapis.com/maps/api/directions/json"
    http_timeout_s: int = 10
    http_tries: int = 3
    http_backoff_s: float = 0.5

    # Proximity thresholds (metres)
    distance_arriving_m: float = 1000
    distance_pickup_m: float = 100
    distance_route_m: float = 200
    distance_subscribe_m: float = 5000
    distance_method: str = "haversine"  # "haversine" | "planar"

    # Deviation-triggered reroutes closer together than this are skipped
    reroute_min_interval_s: int = 30

    # TTL in seconds for cached directions responses
    ttl_directions: int = 60

    # Zone used to compute recurring day keys (Mon, Tue, ... / 1..31)
    timezone: str = "UTC"

    # Background worker
    worker_interval_s: int = 60

    def distances(self) -> Distances:
        return Distances(
            arriving=self.distance_arriving_m,
            pickup=self.distance_pickup_m,
            route=self.distance_route_m,
            subscribe=self.distance_subscribe_m,
        )


settings = Settings()

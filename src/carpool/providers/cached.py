from __future__ import annotations

import logging
from typing import Any, Dict

from carpool.cache import keys
from carpool.cache.redis_client import cache_get_json, cache_set_json
from carpool.core.models import RouteRequest
from carpool.providers.base import RouteProvider

log = logging.getLogger(__name__)


class CachedRouteProvider(RouteProvider):
    """
    Coalesces identical directions requests through Redis.

    Many participants of one trip push locations every few seconds; while the
    waypoint set is unchanged they all map onto the same request and share one
    upstream call per TTL window. Without Redis this is a plain pass-through.
    Empty results are never cached.
    """

    def __init__(self, inner: RouteProvider, ttl_s: int = 60):
        self.inner = inner
        self.ttl_s = ttl_s

    def directions(self, request: RouteRequest) -> Dict[str, Any]:
        key = keys.directions(request.model_dump_json())
        cached = cache_get_json(key)
        if cached is not None:
            log.debug("Directions cache hit %s", key)
            return cached

        data = self.inner.directions(request)
        if data.get("routes"):
            cache_set_json(key, data, self.ttl_s)
        return data


def build_provider(name: str):
    """
    Build the route provider stack from a name:
      "google" -> Google Directions behind the Redis response cache
      "mock"   -> deterministic straight-line routes
    """
    from carpool.config import settings

    token = name.strip().lower()

    # Local imports to avoid circular imports
    from carpool.providers.google import GoogleDirectionsProvider
    from carpool.providers.http import HTTPClient
    from carpool.providers.mock import MockRouteProvider

    if token == "mock":
        return MockRouteProvider()
    if token == "google":
        http = HTTPClient(
            timeout_s=settings.http_timeout_s,
            tries=settings.http_tries,
            backoff_s=settings.http_backoff_s,
        )
        inner = GoogleDirectionsProvider(settings.google_api_key, settings.directions_url, http=http)
        return CachedRouteProvider(inner, ttl_s=settings.ttl_directions)
    raise ValueError(f"Unknown route provider: '{name}' (supported: google, mock)")

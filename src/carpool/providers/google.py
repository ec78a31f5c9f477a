from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from requests.exceptions import RequestException

from carpool.core.models import RouteRequest
from carpool.errors import RoutingError
from carpool.providers.base import RouteProvider
from carpool.providers.http import HTTPClient

log = logging.getLogger(__name__)

# Statuses worth another attempt
_RETRY_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}
# Statuses that mean "no route", not "request broken"
_EMPTY_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}


def build_params(request: RouteRequest, key: str, now: Optional[int] = None) -> Dict[str, Any]:
    """Query parameters for the Directions JSON API."""
    params: Dict[str, Any] = {
        "origin": request.origin,
        "destination": request.destination,
        "mode": request.travel_mode.lower(),
    }
    if request.waypoints:
        parts = [f"optimize:{'true' if request.optimize else 'false'}"]
        for wp in request.waypoints:
            parts.append(wp.location if wp.stopover else f"via:{wp.location}")
        params["waypoints"] = "|".join(parts)

    # The API rejects departure times in the past and both times together
    if request.arrival_time is not None:
        params["arrival_time"] = int(request.arrival_time)
    elif request.departure_time is not None:
        now = int(time.time()) if now is None else now
        params["departure_time"] = max(int(request.departure_time), now)
    if key:
        params["key"] = key
    return params


def _rename_instructions(obj: Any) -> Any:
    """Expose ``html_instructions`` as ``instructions`` throughout the response."""
    if isinstance(obj, dict):
        return {
            ("instructions" if k == "html_instructions" else k): _rename_instructions(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_rename_instructions(v) for v in obj]
    return obj


class GoogleDirectionsProvider(RouteProvider):
    """
    Google Directions API.

    Transport errors are retried by the HTTP client; throttling statuses are
    retried here with the same backoff. Anything left over becomes a
    RoutingError so callers see a single failure type.
    """

    def __init__(
        self,
        api_key: str = "",
        url: str = "https://maps.googleapis.com/maps/api/directions/json",
        http: Optional[HTTPClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.url = url
        self.http = http or HTTPClient()
        self.clock = clock

    def directions(self, request: RouteRequest) -> Dict[str, Any]:
        params = build_params(request, self.api_key, now=int(self.clock()))
        tries = max(1, self.http.tries)
        for attempt in range(tries):
            try:
                data = self.http.get_json(self.url, params=params)
            except (RequestException, ValueError) as e:
                raise RoutingError(f"directions request failed: {e}") from e

            status = data.get("status", "OK")
            if status == "OK":
                return _rename_instructions(data)
            if status in _EMPTY_STATUSES:
                log.info("Directions returned %s for %s -> %s", status, request.origin, request.destination)
                return {"status": status, "routes": []}
            if status in _RETRY_STATUSES and attempt < tries - 1:
                log.warning("Directions status %s (attempt %d/%d)", status, attempt + 1, tries)
                time.sleep(self.http.backoff_s * (2**attempt))
                continue
            detail = data.get("error_message") or status
            raise RoutingError(f"directions service answered {detail}")
        raise RoutingError("directions service kept throttling")

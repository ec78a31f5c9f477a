from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict

from carpool.core.models import RouteRequest


class RouteProvider(ABC):
    """Ask a directions service for routes between ordered points.

    Returns the provider's response shaped as
    ``{"routes": [{"legs": [{start_location, end_location, steps, distance, duration}]}]}``.
    An empty ``routes`` list means no route exists; transport failures that
    survive retries raise ``RoutingError``.
    """

    @abstractmethod
    def directions(self, request: RouteRequest) -> Dict[str, Any]:
        raise NotImplementedError

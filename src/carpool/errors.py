"""Error taxonomy raised by the trip engine.

Every error carries the HTTP status the API layer answers with.
"""
from __future__ import annotations

from typing import Iterable, Optional


class CarpoolError(Exception):
    status_code: int = 400
    default_message: str = "Trip operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class RoutingError(CarpoolError):
    status_code = 502

    def __init__(self, explanation: str = "no routes found"):
        self.explanation = explanation
        super().__init__(f"Routing error: {explanation}")


class StateTransitionError(CarpoolError):
    status_code = 409

    def __init__(self, current: Optional[str], target: str, allowed: Iterable[str] = ()):
        self.current = current
        self.target = target
        self.allowed = sorted(allowed)
        msg = f"Can't go from {current} to {target}"
        if self.allowed:
            msg += f" (allowed: {', '.join(self.allowed)})"
        super().__init__(msg)


class TripAlreadyStartedError(CarpoolError):
    status_code = 409
    default_message = "The trip already started"


class TripDurationError(CarpoolError):
    status_code = 409
    default_message = "This would make the trip take too long."


class CapacityFullError(CarpoolError):
    status_code = 409
    default_message = "The trip is full"


class TripClosedError(CarpoolError):
    status_code = 409
    default_message = "The trip is closed"


class NotAuthorizedError(CarpoolError):
    status_code = 403
    default_message = "You are not authorized to do this"


class NotFoundError(CarpoolError):
    status_code = 404
    default_message = "Not found"


class RequiredFieldError(CarpoolError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} is required")


class InvalidValueError(CarpoolError):
    def __init__(self, field: str, range: str):
        self.field = field
        self.range = range
        super().__init__(f"Invalid value for {field}, expected {range}")

"""Join-time admission control: seats and detour budget."""
from __future__ import annotations

from typing import Optional

from carpool.errors import CapacityFullError, InvalidValueError, TripDurationError

# detour budget unit -> seconds or metres
DETOUR_FACTORS = {
    "minutes": 60.0,
    "kilometers": 1000.0,
    "miles": 1609.344,
}


class AdmissionController:
    @staticmethod
    def check_capacity(active_count: int, people_max: Optional[int]) -> None:
        """A zero or missing ``people_max`` means unlimited seats."""
        if people_max and active_count >= people_max:
            raise CapacityFullError()

    @staticmethod
    def check_detour(
        baseline_duration: float,
        baseline_distance: float,
        candidate_duration: float,
        candidate_distance: float,
        detour_max: float,
        detour_type: str,
    ) -> None:
        """
        Reject a candidate route that exceeds the baseline by more than the
        detour budget. Minutes compare durations (seconds); kilometers and miles
        compare distances (metres). Hitting the budget exactly is allowed.
        """
        factor = DETOUR_FACTORS.get(detour_type)
        if factor is None:
            raise InvalidValueError("detourType", "minutes, kilometers or miles")
        budget = detour_max * factor
        if detour_type == "minutes":
            if candidate_duration > baseline_duration + budget:
                raise TripDurationError()
        elif candidate_distance > baseline_distance + budget:
            raise TripDurationError()

"""Redis key naming conventions for the carpool cache layer."""
from __future__ import annotations

import hashlib

_PREFIX = "cp"


# ── Directions ───────────────────────────────────────────────────────────

def directions(request_json: str) -> str:
    """Key for a directions response, hashed on the canonical request."""
    h = hashlib.sha256(request_json.encode()).hexdigest()[:16]
    return f"{_PREFIX}:directions:{h}"


# ── Notifications ────────────────────────────────────────────────────────

def arriving_notified(trip_key: str) -> str:
    """Set of passenger ids that already got the arriving note for a trip."""
    return f"{_PREFIX}:notified:arriving:{trip_key}"

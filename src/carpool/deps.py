"""Process-wide engine singleton for the API and the worker."""
from __future__ import annotations

import logging
from typing import Optional

from carpool.core.engine import TripEngine, build_engine

log = logging.getLogger(__name__)

_engine: Optional[TripEngine] = None


def get_engine() -> TripEngine:
    """Lazy singleton, built from settings on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine()
        log.info("Trip engine ready (provider=%s)", _engine.settings.route_provider)
    return _engine

"""Background spawner for recurring trips.

Every cycle creates the next instance of each open schedule whose latest
trip has started, and re-joins the passengers who ride on that day.

Run with:  python -m carpool.worker
"""
from __future__ import annotations

import logging
import time

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [worker] %(levelname)s %(message)s",
)
log = logging.getLogger(__name__)


def run_cycle(engine=None) -> int:
    """One spawning pass. Returns the number of schedules handled."""
    if engine is None:
        from carpool.deps import get_engine
        engine = get_engine()
    spawned = engine.spawner.tick()
    for trip in spawned:
        log.info("Schedule %s upcoming instance: %s", trip.recurring_id, trip.key)
    return len(spawned)


def main() -> None:
    from carpool.config import settings

    log.info("Worker starting (interval=%ds)", settings.worker_interval_s)

    while True:
        try:
            run_cycle()
        except Exception as exc:
            log.exception("Worker cycle error: %s", exc)
        log.info("Sleeping %ds until next cycle", settings.worker_interval_s)
        time.sleep(settings.worker_interval_s)


if __name__ == "__main__":
    main()

"""Replay a trip scenario against the mock router and print what happened.

A scenario file looks like::

    {
      "start": 1767258000,
      "driver": "d1",
      "trip": {"type": "to", "from": {...}, "to": {...}, "end_time": ..., "people_max": 3},
      "steps": [
        {"at": 60, "op": "join", "user": "p1", "coordinates": {"latitude": ..., "longitude": ...}},
        {"at": 120, "op": "start", "user": "d1", "coordinates": {...}},
        {"at": 180, "op": "coordinates", "user": "d1", "coordinates": {...}},
        {"at": 600, "op": "completed", "user": "d1"}
      ]
    }

``at`` is seconds after ``start``.
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Callable, Dict, List

from rich.console import Console
from rich.table import Table

from carpool.config import Settings
from carpool.core.engine import TripEngine
from carpool.core.notifications import InMemoryEventBus
from carpool.errors import CarpoolError
from carpool.providers.mock import MockRouteProvider
from carpool.repository import InMemoryRepository


class _Clock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _read_scenario(path: Path) -> Dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def _save_json(path: Path, obj) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2), encoding="utf-8")


def _operations(engine: TripEngine, key: str) -> Dict[str, Callable[[Dict[str, Any]], Any]]:
    return {
        "join": lambda s: engine.join(key, s["user"], s.get("coordinates")),
        "leave": lambda s: engine.leave(key, s["user"]),
        "start": lambda s: engine.start(key, s["user"], s.get("coordinates")).attributes.state,
        "state": lambda s: engine.set_state(key, s["user"], s["state"]),
        "coordinates": lambda s: engine.set_coordinates(key, s["user"], s.get("coordinates")).attributes.state,
        "discontinue": lambda s: engine.discontinue(key, s["user"]).attributes.state,
        "completed": lambda s: engine.completed(key, s["user"]).attributes.state,
    }


def replay(scenario: Dict[str, Any], speed_mps: float = 12.5):
    """Run every step of *scenario*; returns (engine, trip key, rows, bus)."""
    clock = _Clock(int(scenario.get("start", 0)))
    bus = InMemoryEventBus()
    engine = TripEngine(
        InMemoryRepository(),
        MockRouteProvider(speed_mps=speed_mps),
        bus=bus,
        settings=Settings(redis_url="", reroute_min_interval_s=0),
        clock=clock,
    )
    trip = engine.create(scenario["driver"], scenario["trip"])
    ops = _operations(engine, trip.key)

    rows: List[Dict[str, Any]] = []
    for i, step in enumerate(scenario.get("steps", []), start=1):
        clock.now = int(scenario.get("start", 0)) + int(step.get("at", 0))
        seen = len(bus.events)
        op = ops.get(step["op"])
        if op is None:
            result = f"unknown op {step['op']}"
        else:
            try:
                result = op(step)
            except CarpoolError as exc:
                result = f"{type(exc).__name__}: {exc.message}"
        current = engine.get_trip(trip.key)
        rows.append({
            "step": i,
            "at": clock.now,
            "op": step["op"],
            "user": step.get("user", ""),
            "result": result,
            "trip_state": current.attributes.state,
            "minutes": current.attributes.minutes,
            "events": [e.type for e in bus.events[seen:]],
        })
    return engine, trip.key, rows, bus


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--scenario", default="scenarios/sample_trip.json", help="Path to a scenario JSON file")
    ap.add_argument("--speed", type=float, default=12.5, help="Mock driving speed in m/s")
    ap.add_argument("--out", default=None, help="Write the final trip and events as JSON here")
    args = ap.parse_args()

    scenario = _read_scenario(Path(args.scenario))
    engine, key, rows, bus = replay(scenario, speed_mps=args.speed)

    console = Console()

    table = Table(title=f"Trip replay: {key}")
    table.add_column("#")
    table.add_column("Time")
    table.add_column("Op")
    table.add_column("User")
    table.add_column("Result")
    table.add_column("Trip")
    table.add_column("Min")
    table.add_column("Events")

    for r in rows:
        table.add_row(
            str(r["step"]),
            str(r["at"]),
            r["op"],
            r["user"],
            str(r["result"]),
            r["trip_state"],
            "" if r["minutes"] is None else f"{r['minutes']:.1f}",
            ", ".join(r["events"]),
        )

    console.print(table)

    states = Table(title="Participants")
    states.add_column("User")
    states.add_column("State")
    states.add_column("Participating")
    for p in engine.repo.participants(key):
        states.add_row(p.user_id, p.state or "", "yes" if p.participating else "no")
    console.print(states)

    if args.out:
        _save_json(Path(args.out), {
            "trip": engine.get_trip(key).model_dump(mode="json", by_alias=True),
            "events": [e.model_dump(mode="json") for e in bus.events],
        })
        console.print(f"Saved replay to {args.out}")


if __name__ == "__main__":
    main()

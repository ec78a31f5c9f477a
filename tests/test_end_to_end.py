import json
from pathlib import Path

from carpool.cli import replay
from carpool.core import notifications as ev

from tests.conftest import at

SCENARIO = Path(__file__).resolve().parent.parent / "scenarios" / "sample_trip.json"

LIFECYCLE = (ev.ADDED, ev.STARTED, ev.ARRIVING, ev.PICKUP, ev.FINISHING)


def test_two_passenger_trip(make_trip, engine, bus, clock):
    trip = make_trip()
    key = trip.key

    engine.join(key, "p1", at(40.03))
    engine.join(key, "p2", at(40.06))
    assert engine.get_trip(key).directions.pickups == ["p1", "p2"]

    clock.advance(60)
    engine.start(key, "d1", at(40.0))

    for lat in (40.025, 40.0295, 40.055, 40.0598, 40.095):
        clock.advance(120)
        engine.set_coordinates(key, "d1", at(lat))

    assert engine.get_participant(key, "p1").state == "riding"
    assert engine.get_participant(key, "p2").state == "riding"

    clock.advance(120)
    engine.completed(key, "d1")

    assert engine.get_participant(key, "d1").state == "completed"
    assert engine.get_participant(key, "p1").state == "arrived"
    assert engine.get_participant(key, "p2").state == "arrived"
    assert engine.get_trip(key).closed

    seen = [(e.type, e.instructions.get("passengerId")) for e in bus.events if e.type in LIFECYCLE]
    assert seen == [
        (ev.ADDED, None),
        (ev.STARTED, None),
        (ev.ARRIVING, "p1"),
        (ev.PICKUP, "p1"),
        (ev.ARRIVING, "p2"),
        (ev.PICKUP, "p2"),
        (ev.FINISHING, None),
    ]


def test_cli_replay():
    scenario = json.loads(SCENARIO.read_text(encoding="utf-8"))
    engine, key, rows, bus = replay(scenario)
    assert [r["op"] for r in rows][0] == "join"
    assert rows[-1]["trip_state"] == "ended"
    assert not any(isinstance(r["result"], str) and "Error" in r["result"] for r in rows)
    assert engine.get_participant(key, "p1").state == "arrived"
    assert bus.of_type(ev.FINISHING)

import pytest

from carpool.core import notifications as ev

from tests.conftest import T0, at


@pytest.fixture
def started(make_trip, engine, clock):
    """Driver at the origin, p1 waiting 3.3 km up the road."""
    trip = make_trip()
    engine.join(trip.key, "p1", at(40.03))
    clock.advance(60)
    engine.start(trip.key, "d1", at(40.0))
    return trip.key


def test_arriving_note_goes_out_once(started, engine, bus, clock):
    clock.advance(60)
    engine.set_coordinates(started, "d1", at(40.025))
    clock.advance(10)
    engine.set_coordinates(started, "d1", at(40.026))

    arriving = bus.of_type(ev.ARRIVING)
    assert len(arriving) == 1
    assert arriving[0].instructions == {"driverId": "d1", "passengerId": "p1", "passengerName": "Pat"}
    assert engine.notifications.got_arriving_note(started, "p1")
    assert engine.get_participant(started, "p1").state == "waiting"


def test_no_proximity_events_before_start(make_trip, engine, bus):
    trip = make_trip()
    engine.join(trip.key, "p1", at(40.03))
    engine.set_coordinates(trip.key, "d1", at(40.0299))
    assert bus.of_type(ev.ARRIVING) == []
    assert engine.get_participant(trip.key, "p1").state == "waiting"


def test_pickup_when_driver_reaches_passenger(started, engine, bus, clock):
    clock.advance(120)
    engine.set_coordinates(started, "d1", at(40.0295))

    assert engine.get_participant(started, "p1").state == "riding"
    pickup = bus.of_type(ev.PICKUP)
    assert len(pickup) == 1
    assert pickup[0].by_user_id == "p1"
    trip = engine.get_trip(started)
    assert trip.attributes.last_pickup == "p1"
    assert trip.attributes.origin.latitude == 40.0295
    # arriving fires on the same update as the pickup
    assert len(bus.of_type(ev.ARRIVING)) == 1


def test_finishing_near_destination(started, engine, bus, clock):
    clock.advance(600)
    engine.set_coordinates(started, "d1", at(40.095))
    assert len(bus.of_type(ev.FINISHING)) == 1


def test_passenger_updates_do_not_announce_finishing(started, engine, bus):
    engine.set_coordinates(started, "p1", at(40.095))
    assert bus.of_type(ev.FINISHING) == []


def test_off_route_driver_triggers_reroute(started, engine, clock):
    clock.advance(60)
    engine.set_coordinates(started, "d1", at(40.01, -74.99))
    trip = engine.get_trip(started)
    assert trip.directions.computed_at == T0 + 120
    assert trip.attributes.origin.longitude == -74.99


def test_reroutes_are_debounced(started, engine, clock):
    clock.advance(60)
    engine.set_coordinates(started, "d1", at(40.01, -74.99))
    clock.advance(10)
    engine.set_coordinates(started, "d1", at(40.012, -74.98))
    trip = engine.get_trip(started)
    assert trip.directions.computed_at == T0 + 120
    # the stored location still moves
    assert trip.coordinates["d1"].longitude == -74.98


def test_removing_coordinates_reroutes(started, engine, clock):
    clock.advance(5)
    engine.set_coordinates(started, "p1", None)
    trip = engine.get_trip(started)
    assert "p1" not in trip.coordinates
    assert trip.directions.pickups == []
    assert trip.directions.computed_at == T0 + 65


def test_batch_coordinates(started, engine):
    engine.set_coordinates(started, {"d1": at(40.005), "p1": at(40.031)})
    trip = engine.get_trip(started)
    assert trip.coordinates["d1"].latitude == 40.005
    assert trip.coordinates["p1"].latitude == 40.031


def test_passenger_cannot_move_someone_else(started, engine):
    from carpool.errors import NotAuthorizedError

    with pytest.raises(NotAuthorizedError):
        engine.set_coordinates(started, "d1", at(40.01), acting_user_id="p1")


def test_leaving_forgets_the_arriving_note(started, engine, clock):
    clock.advance(60)
    engine.set_coordinates(started, "d1", at(40.025))
    assert engine.notifications.got_arriving_note(started, "p1")
    engine.leave(started, "p1")
    assert not engine.notifications.got_arriving_note(started, "p1")


def test_bus_failures_do_not_break_operations(make_trip, engine, clock):
    class Broken:
        def publish(self, event):
            raise RuntimeError("down")

    trip = make_trip()
    engine.notifications.bus = Broken()
    assert engine.join(trip.key, "p1", at(40.03)) is True
    assert engine.get_participant(trip.key, "p1").state == "waiting"

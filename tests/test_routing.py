import pytest

from carpool.core.session import TripSession
from carpool.errors import RoutingError

from tests.conftest import ROUTE_M, ROUTE_S, T0, at


def _session(engine, key):
    return TripSession(engine.repo, engine.repo.fetch_trip(key), engine.clock)


def test_create_routes_and_derives_start_for_arrive_by_trip(make_trip, provider):
    trip = make_trip()
    assert trip.directions is not None
    assert trip.directions.duration_s == ROUTE_S
    assert trip.directions.distance_m == ROUTE_M
    assert trip.attributes.end_time == T0 + 3600
    assert trip.attributes.start_time == T0 + 3600 - ROUTE_S
    assert provider.requests[-1].arrival_time == T0 + 3600
    assert provider.requests[-1].departure_time is None


def test_depart_at_trip_derives_end(make_trip, provider):
    trip = make_trip(type="from", end_time=None, start_time=T0 + 7200)
    assert trip.attributes.start_time == T0 + 7200
    assert trip.attributes.end_time == T0 + 7200 + ROUTE_S
    assert provider.requests[-1].departure_time == T0 + 7200


def test_too_late_to_arrive_on_time_leaves_now(make_trip):
    trip = make_trip(end_time=T0 + 100)
    assert trip.attributes.start_time == T0
    assert trip.attributes.end_time == T0 + ROUTE_S


def test_pickups_follow_route_order(make_trip, engine):
    trip = make_trip()
    engine.join(trip.key, "p2", at(40.06))
    engine.join(trip.key, "p1", at(40.03))
    # mock keeps the given order, which is join order here
    assert engine.get_trip(trip.key).directions.pickups == ["p2", "p1"]


def test_waypoints_put_driver_first_and_skip_riders(make_trip, engine, clock):
    trip = make_trip()
    engine.join(trip.key, "p1", at(40.03))
    engine.join(trip.key, "p2", at(40.06))
    clock.advance(60)
    engine.start(trip.key, "d1", at(40.0))

    wps = engine.routes.derive_waypoints(_session(engine, trip.key))
    assert [(w.user_id, w.stopover) for w in wps] == [("d1", False), ("p1", True), ("p2", True)]

    engine.set_state(trip.key, "p1", "riding")
    wps = engine.routes.derive_waypoints(_session(engine, trip.key))
    assert [w.user_id for w in wps] == ["d1", "p2"]


def test_started_trip_routes_by_departure(make_trip, engine, provider, clock):
    trip = make_trip()
    clock.advance(120)
    engine.start(trip.key, "d1", at(40.0))
    request = provider.requests[-1]
    assert request.departure_time == T0 + 120
    assert request.arrival_time is None
    assert engine.get_trip(trip.key).attributes.end_time == T0 + 120 + ROUTE_S


def test_empty_answer_keeps_cached_directions(make_trip, engine, provider, clock):
    trip = make_trip()
    before = engine.get_trip(trip.key)
    provider.fail = True
    clock.advance(300)
    with pytest.raises(RoutingError):
        engine.route(trip.key)
    after = engine.get_trip(trip.key)
    assert after.directions == before.directions
    assert after.attributes == before.attributes


def test_failed_route_on_join_changes_nothing(make_trip, engine, provider, bus):
    trip = make_trip()
    seen = len(bus.events)
    provider.fail = True
    with pytest.raises(RoutingError):
        engine.join(trip.key, "p1", at(40.03))
    assert engine.repo.fetch_participant(trip.key, "p1") is None
    assert "p1" not in engine.get_trip(trip.key).coordinates
    assert len(bus.events) == seen


def test_unresolvable_location_is_a_routing_error(engine):
    with pytest.raises(RoutingError):
        engine.create("d1", {
            "type": "to",
            "from": {"address": "nowhere in particular"},
            "to": {"latitude": 40.1, "longitude": -75.0, "venue": "Stadium"},
            "end_time": T0 + 3600,
        })
    assert engine.repo.trips() == []


def test_reroute_is_debounced(make_trip, engine, clock):
    trip = make_trip()
    session = _session(engine, trip.key)
    clock.advance(10)
    assert engine.routes.reroute_if_due(session) is None
    clock.advance(25)
    result = engine.routes.reroute_if_due(session)
    assert result is not None
    assert session.trip.directions.computed_at == T0 + 35


def test_build_request_resolves_places_and_addresses(make_trip, engine):
    trip = make_trip()
    session = _session(engine, trip.key)
    session.trip.attributes.origin.latitude = None
    session.trip.attributes.origin.place_id = "ChIJ123"
    session.trip.attributes.destination.latitude = None
    session.trip.attributes.destination.address = "1 Stadium Way"
    request = engine.routes.build_request(session)
    assert request.origin == "place_id:ChIJ123"
    assert request.destination == "1 Stadium Way"

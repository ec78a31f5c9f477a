import pytest

from carpool.core import geo


def test_haversine_one_degree_latitude():
    assert geo.haversine_m(40.0, -75.0, 41.0, -75.0) == pytest.approx(111195, rel=1e-3)


def test_planar_close_to_haversine_for_short_hops():
    h = geo.haversine_m(40.0, -75.0, 40.01, -74.99)
    p = geo.planar_m(40.0, -75.0, 40.01, -74.99)
    assert p == pytest.approx(h, rel=1e-3)


def test_unknown_method():
    with pytest.raises(ValueError):
        geo.distance_m(0, 0, 1, 1, method="manhattan")


def test_decode_polyline():
    pts = geo.decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
    assert pts == [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


def test_route_polyline_from_step_endpoints():
    route = {"legs": [{"steps": [
        {"start_location": {"lat": 40.0, "lng": -75.0}, "end_location": {"lat": 40.05, "lng": -75.0}},
        {"start_location": {"lat": 40.05, "lng": -75.0}, "end_location": {"lat": 40.1, "lng": -75.0}},
    ]}]}
    assert geo.route_polyline(route)[0] == (40.0, -75.0)
    assert geo.route_polyline(route)[-1] == (40.1, -75.0)


def test_route_polyline_prefers_overview():
    route = {"overview_polyline": {"points": "_p~iF~ps|U_ulLnnqC"}, "legs": []}
    assert geo.route_polyline(route) == [(38.5, -120.2), (40.7, -120.95)]


def test_distance_to_polyline():
    line = [(40.0, -75.0), (40.1, -75.0)]
    d = geo.distance_to_polyline_m(40.05, -74.999, line)
    assert d == pytest.approx(85.2, abs=0.5)
    assert geo.distance_to_polyline_m(40.05, -75.0, line) == pytest.approx(0, abs=1e-6)


def test_distance_to_empty_polyline():
    assert geo.distance_to_polyline_m(40.0, -75.0, []) is None


def test_decode_polyline_high_precision():
    pts = geo.decode_polyline("_izlhA~rlgdF_{geC~ywl@", precision=6)
    assert pts == [(38.5, -120.2), (40.7, -120.95)]

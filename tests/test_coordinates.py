import pytest

from carpool.core.coordinates import CoordinateStore, normalize
from carpool.core.models import CoordinateRecord
from carpool.errors import InvalidValueError, RequiredFieldError


def test_normalize_coerces_numbers():
    c = normalize({"latitude": "40.5", "longitude": -75, "heading": "90"})
    assert c == CoordinateRecord(latitude=40.5, longitude=-75.0, heading=90.0)


def test_normalize_missing_field():
    with pytest.raises(RequiredFieldError) as exc:
        normalize({"latitude": 40.0})
    assert exc.value.field == "coordinates.longitude"


def test_normalize_bad_value():
    with pytest.raises(InvalidValueError):
        normalize({"latitude": "north", "longitude": -75.0})


def test_store_writes_through_to_the_wrapped_map():
    records = {}
    store = CoordinateStore(records)
    store.set("p1", {"latitude": 40.0, "longitude": -75.0})
    assert "p1" in records
    assert store.remove("p1")
    assert records == {}


def test_update_validates_everything_first():
    records = {"d1": CoordinateRecord(latitude=40.0, longitude=-75.0)}
    store = CoordinateStore(records)
    with pytest.raises(InvalidValueError):
        store.update({"p1": {"latitude": 40.1, "longitude": -75.0}, "p2": {"latitude": "x", "longitude": 1}})
    assert set(records) == {"d1"}

    store.update({"d1": None, "p1": {"latitude": 40.1, "longitude": -75.0}})
    assert set(records) == {"p1"}


def test_ordered_puts_first_in_front():
    store = CoordinateStore({})
    store.set("p1", {"latitude": 1, "longitude": 1})
    store.set("d1", {"latitude": 2, "longitude": 2})
    assert [uid for uid, _ in store.ordered(first="d1")] == ["d1", "p1"]


def test_nearest():
    store = CoordinateStore({})
    store.set("d1", {"latitude": 40.0, "longitude": -75.0})
    store.set("p1", {"latitude": 40.02, "longitude": -75.0})
    store.set("p2", {"latitude": 40.01, "longitude": -75.0})
    uid, dist = store.nearest("d1", ["p1", "p2", "ghost"])
    assert uid == "p2"
    assert dist == pytest.approx(1112, abs=2)


def test_nearest_without_origin():
    store = CoordinateStore({})
    store.set("p1", {"latitude": 40.02, "longitude": -75.0})
    assert store.nearest("d1", ["p1"]) == (None, None)

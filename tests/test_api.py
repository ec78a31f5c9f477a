import jwt
import pytest
from fastapi.testclient import TestClient

from carpool import auth
from carpool.api import app
from carpool.deps import get_engine

from tests.conftest import DESTINATION, ORIGIN, T0, at


@pytest.fixture
def client(engine, settings, monkeypatch):
    monkeypatch.setattr(auth.settings, "jwt_secret", settings.jwt_secret)
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def token(settings):
    def _token(user_id):
        payload = {"sub": user_id, "aud": "authenticated"}
        return {"Authorization": f"Bearer {jwt.encode(payload, settings.jwt_secret, algorithm='HS256')}"}
    return _token


def _create(client, token, **extra):
    body = {
        "type": "to",
        "from": ORIGIN,
        "to": DESTINATION,
        "arrive_time": T0 + 3600,
        "people_max": 2,
    }
    body.update(extra)
    return client.post("/trips", json=body, headers=token("d1"))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "redis": False}


def test_requires_token(client):
    assert client.post("/trips", json={}).status_code == 401
    assert client.get("/trips/participating", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_create_and_get(client, token):
    r = _create(client, token)
    assert r.status_code == 201
    body = r.json()
    assert body["participant"]["extra"]["state"] == "planning"
    trip = body["trip"]
    assert trip["attributes"]["to"]["venue"] == "Stadium"
    assert trip["attributes"]["end_time"] == T0 + 3600

    got = client.get(f"/trips/d1/{trip['name']}", headers=token("d1"))
    assert got.status_code == 200
    assert got.json()["trip"]["title"] == "Ride to: Stadium"


def test_create_needs_venue(client, token):
    r = _create(client, token, to={"latitude": 40.1, "longitude": -75.0})
    assert r.status_code == 400
    assert r.json()["error"] == "RequiredFieldError"


def test_offer_return_trip(client, token, engine):
    r = _create(client, token, offer_from_too=True, depart_time=T0 + 4 * 3600)
    assert r.status_code == 201
    trips = sorted(engine.repo.trips(), key=lambda t: t.attributes.type)
    assert [t.attributes.type for t in trips] == ["from", "to"]
    back = trips[0]
    assert back.title == "Ride from: Stadium"
    assert back.attributes.start_time == T0 + 4 * 3600
    assert back.attributes.origin.latitude == DESTINATION["latitude"]


def test_return_trip_needs_depart_time_before_anything_is_stored(client, token, engine):
    r = _create(client, token, offer_from_too=True)
    assert r.status_code == 400
    assert r.json()["error"] == "RequiredFieldError"
    assert engine.repo.trips() == []


def test_state_change_carries_extra(client, token):
    name = _create(client, token).json()["trip"]["name"]
    base = f"/trips/d1/{name}"
    client.post(f"{base}/join", json={"coordinates": at(40.03)}, headers=token("p1"))

    r = client.post(f"{base}/state", json={"state": "canceled", "extra": {"note": "sick today"}},
                    headers=token("p1"))
    assert r.status_code == 200
    assert r.json()["participant"]["extra"]["note"] == "sick today"


def test_join_state_and_errors(client, token):
    name = _create(client, token).json()["trip"]["name"]
    base = f"/trips/d1/{name}"

    r = client.post(f"{base}/join", json={"coordinates": at(40.03)}, headers=token("p1"))
    assert r.status_code == 200
    assert r.json()["changed"] is True
    assert r.json()["participant"]["extra"]["state"] == "waiting"

    r = client.post(f"{base}/state", json={"state": "arrived"}, headers=token("p1"))
    assert r.status_code == 409
    assert r.json()["error"] == "StateTransitionError"

    r = client.post(f"{base}/start", json={"coordinates": at(40.03)}, headers=token("p1"))
    assert r.status_code == 403

    r = client.get("/trips/participating", params={"state": "waiting"}, headers=token("p1"))
    assert [t["name"] for t in r.json()] == [name]

    r = client.post(f"{base}/leave", headers=token("p1"))
    assert r.json()["participant"]["extra"]["state"] == "canceled"


def test_driver_flow(client, token):
    name = _create(client, token).json()["trip"]["name"]
    base = f"/trips/d1/{name}"
    client.post(f"{base}/join", json={"coordinates": at(40.03)}, headers=token("p1"))

    r = client.post(f"{base}/start", json={"coordinates": at(40.0)}, headers=token("d1"))
    assert r.json()["trip"]["attributes"]["state"] == "started"

    r = client.post(f"{base}/coordinates", json={"coordinates": at(40.0295)}, headers=token("d1"))
    assert r.status_code == 200

    r = client.post(f"{base}/state", json={"state": "arrived", "user_id": "p1"}, headers=token("d1"))
    assert r.json()["participant"]["extra"]["state"] == "arrived"

    r = client.put(f"{base}/estimates", json={"minutes": 10, "km": 8, "legs": []}, headers=token("d1"))
    assert r.json()["trip"]["attributes"]["minutes"] == 10

    r = client.post(f"{base}/complete", headers=token("d1"))
    assert r.json()["trip"]["closed"] is True

    r = client.post(f"{base}/join", json={"coordinates": at(40.03)}, headers=token("p2"))
    assert r.status_code == 409
    assert r.json()["error"] == "TripClosedError"


def test_unknown_trip(client, token):
    r = client.get("/trips/d1/nope", headers=token("d1"))
    assert r.status_code == 404
    assert r.json() == {"error": "NotFoundError", "detail": "Trip d1:nope not found"}


def test_recurring_endpoints(client, token, engine, clock):
    r = _create(client, token, recurring={"period": "weekly", "days": ["Thu"]})
    schedule_id = r.json()["trip"]["recurring_id"]

    r = client.put(f"/recurring/{schedule_id}/days", json={"days": ["Thu", "Mon"]}, headers=token("d1"))
    assert r.json()["days"] == ["Thu", "Mon"]

    assert client.post(f"/recurring/{schedule_id}/spawn", json={}, headers=token("p1")).status_code == 403

    clock.advance(7200)
    r = client.post(f"/recurring/{schedule_id}/spawn", json={}, headers=token("d1"))
    assert r.status_code == 200
    assert r.json()["trip"]["attributes"]["start_time"] > T0 + 86400
    assert len(engine.repo.trips()) == 2

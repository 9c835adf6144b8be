"""
API tests through FastAPI's TestClient.

The app keeps module-level in-memory state, so every test works with its own
user ids.
"""
import threading
import time
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from locintel.api import main


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def ids():
    tag = uuid4().hex[:8]
    return {"owner": f"owner-{tag}", "friend": f"friend-{tag}", "other": f"other-{tag}"}


def iso(dt):
    return dt.isoformat()


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        body = r.json()
        assert body["ok"] is True
        assert body["geofence"]["cooldown_sec"] == 600


class TestPositions:
    def test_sampling_end_to_end(self, client, ids):
        t = datetime.now(UTC) - timedelta(hours=1)
        u = ids["friend"]
        base = {"user_id": u, "lat": -6.2088, "lon": 106.8456}
        near = {**base, "lon": 106.8456 + 0.0001}

        r1 = client.post("/positions", json={**base, "timestamp": iso(t)})
        r2 = client.post("/positions", json={**near, "timestamp": iso(t + timedelta(seconds=30))})
        r3 = client.post("/positions", json={**near, "timestamp": iso(t + timedelta(seconds=70))})

        assert [r.json()["accepted"] for r in (r1, r2, r3)] == [True, False, True]
        hist = client.get(f"/history/{u}", params={"hours": 24}).json()
        assert len(hist) == 2

        live = client.get(f"/locations/{u}").json()
        assert live["lon"] == pytest.approx(106.8457)

    def test_invalid_latitude(self, client, ids):
        r = client.post("/positions", json={"user_id": ids["friend"], "lat": 123, "lon": 0})
        assert r.status_code == 422

    def test_unknown_live_location(self, client, ids):
        assert client.get(f"/locations/{ids['other']}").status_code == 404

    def test_position_error_recorded(self, client, ids):
        r = client.post("/positions/error", json={"user_id": ids["friend"], "reason": "timeout"})
        assert r.status_code == 200
        assert main.sessions[(ids["friend"], "default")].last_error.reason == "timeout"

        client.post("/positions", json={"user_id": ids["friend"], "lat": 1.0, "lon": 1.0})
        assert main.sessions[(ids["friend"], "default")].last_error is None

    def test_permission_denied_drops_session(self, client, ids):
        key = (ids["friend"], "default")
        client.post("/positions", json={"user_id": ids["friend"], "lat": 1.0, "lon": 1.0})
        assert key in main.sessions

        r = client.post("/positions/error", json={"user_id": ids["friend"], "reason": "permission_denied"})

        assert r.status_code == 200
        assert r.json()["location_unavailable"] is True
        assert key not in main.sessions

        # a later fix starts over with a fresh marker
        again = client.post("/positions", json={"user_id": ids["friend"], "lat": 1.0, "lon": 1.0}).json()
        assert again["accepted"] is True
        assert main.sessions[key].last_error is None

    def test_permission_denied_without_session(self, client, ids):
        r = client.post("/positions/error", json={"user_id": ids["other"], "reason": "permission_denied"})
        assert r.status_code == 200
        assert (ids["other"], "default") not in main.sessions


class TestAlerts:
    def test_create_list_toggle_delete(self, client, ids):
        r = client.post(
            "/alerts",
            json={"owner_id": ids["owner"], "friend_id": ids["friend"], "name": "Home", "lat": 1.0, "lon": 2.0},
        )
        assert r.status_code == 201
        alert = r.json()
        assert alert["radius_m"] == 100.0

        listed = client.get("/alerts", params={"owner_id": ids["owner"]}).json()
        assert [a["id"] for a in listed] == [alert["id"]]

        r = client.patch(f"/alerts/{alert['id']}", json={"is_active": False})
        assert r.json()["is_active"] is False

        assert client.delete(f"/alerts/{alert['id']}").status_code == 204
        assert client.delete(f"/alerts/{alert['id']}").status_code == 404
        assert client.patch(f"/alerts/{alert['id']}", json={"is_active": True}).status_code == 404

    def test_defaults_to_friend_position(self, client, ids):
        client.post("/positions", json={"user_id": ids["friend"], "lat": -6.3, "lon": 106.9})
        r = client.post("/alerts", json={"owner_id": ids["owner"], "friend_id": ids["friend"], "name": "Here"})
        assert r.status_code == 201
        assert (r.json()["lat"], r.json()["lon"]) == (-6.3, 106.9)

    @pytest.mark.parametrize("radius", [0, 20, 5000])
    def test_invalid_radius(self, client, ids, radius):
        r = client.post(
            "/alerts",
            json={
                "owner_id": ids["owner"],
                "friend_id": ids["friend"],
                "name": "Gym",
                "lat": 0.0,
                "lon": 0.0,
                "radius_m": radius,
            },
        )
        assert r.status_code == 422

    def test_missing_center(self, client, ids):
        r = client.post("/alerts", json={"owner_id": ids["owner"], "friend_id": ids["other"], "name": "Nowhere"})
        assert r.status_code == 422

    def test_friend_position_triggers_alert_once(self, client, ids):
        alert = client.post(
            "/alerts",
            json={"owner_id": ids["owner"], "friend_id": ids["friend"], "name": "School", "lat": 0.5, "lon": 0.5},
        ).json()

        first = client.post("/positions", json={"user_id": ids["friend"], "lat": 0.5, "lon": 0.5}).json()
        again = client.post("/positions", json={"user_id": ids["friend"], "lat": 0.5, "lon": 0.5}).json()

        assert [t["alert_id"] for t in first["triggers"]] == [alert["id"]]
        assert again["triggers"] == []

        notes = client.get("/notifications", params={"limit": 200}).json()
        mine = [n for n in notes if n["kind"] == "geofence" and n["payload"]["alert_id"] == alert["id"]]
        assert len(mine) == 1

        stored = client.get("/alerts", params={"owner_id": ids["owner"]}).json()[0]
        assert stored["last_triggered_at"] is not None

    def test_parallel_positions_trigger_once(self, client, ids, monkeypatch):
        """Two position reports racing inside one fence notify the owner once"""
        alert = client.post(
            "/alerts",
            json={"owner_id": ids["owner"], "friend_id": ids["friend"], "name": "Park", "lat": 0.7, "lon": 0.7},
        ).json()
        sent = []
        deliver = main.notifier.notify

        def slow_notify(kind, payload):
            time.sleep(0.2)
            if kind == "geofence" and payload["alert_id"] == alert["id"]:
                sent.append(payload)
            deliver(kind, payload)

        monkeypatch.setattr(main.notifier, "notify", slow_notify)
        results = []

        def post():
            results.append(main.report_position(main.PositionIn(user_id=ids["friend"], lat=0.7, lon=0.7)))

        threads = [threading.Thread(target=post) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert sorted(len(r.triggers) for r in results) == [0, 1]
        assert len(sent) == 1


class TestHistoryAndPlaces:
    def test_places_most_recent_first(self, client, ids):
        u = ids["friend"]
        t = datetime.now(UTC) - timedelta(hours=3)
        for minutes, lat in [(0, 0.0), (2, 0.0), (30, 0.02), (40, 0.02)]:
            client.post("/positions", json={"user_id": u, "lat": lat, "lon": 0.0, "timestamp": iso(t + timedelta(minutes=minutes))})

        places = client.get(f"/places/{u}").json()
        assert len(places) == 2
        assert places[0]["ongoing"] is True
        assert places[0]["duration"] == "Now"
        assert places[1]["duration"] == "2m"
        assert places[1]["address"] == "0.0000, 0.0000"

    def test_prune(self, client, ids):
        u = ids["friend"]
        old = datetime.now(UTC) - timedelta(days=10)
        client.post("/positions", json={"user_id": u, "lat": 0.0, "lon": 0.0, "timestamp": iso(old)})
        r = client.post(f"/history/{u}/prune", params={"days": 7})
        assert r.json()["removed"] == 1


class TestSos:
    def test_no_friends_conflict(self, client, ids):
        r = client.post("/sos", json={"user_id": ids["owner"], "lat": 1.0, "lon": 1.0})
        assert r.status_code == 409

    def test_no_position(self, client, ids):
        client.post("/friends", json={"user_id": ids["owner"], "friend_id": ids["friend"]})
        r = client.post("/sos", json={"user_id": ids["owner"]})
        assert r.status_code == 422

    def test_broadcast_reaches_friends(self, client, ids):
        client.post("/friends", json={"user_id": ids["owner"], "friend_id": ids["friend"]})
        client.post("/friends", json={"user_id": ids["owner"], "friend_id": ids["other"]})
        client.post("/positions", json={"user_id": ids["owner"], "lat": -6.2, "lon": 106.8})

        r = client.post("/sos", json={"user_id": ids["owner"]})

        assert r.status_code == 200
        assert sorted(r.json()["recipients"]) == sorted([ids["friend"], ids["other"]])
        notes = client.get("/notifications", params={"limit": 200}).json()
        received = [n for n in notes if n["kind"] == "sos_received" and n["payload"]["sender_id"] == ids["owner"]]
        assert len(received) == 2

    def test_cannot_befriend_self(self, client, ids):
        r = client.post("/friends", json={"user_id": ids["owner"], "friend_id": ids["owner"]})
        assert r.status_code == 422

"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import SUBJECT, BrowserSubscription, FakeRelay, decrypt_request
from pushengine.config import Settings
from pushengine.database import build_engine
from pushengine.main import create_app
from pushengine.services.vapid import generate_vapid_keys

ENDPOINT = "https://fcm.googleapis.com/fcm/send/device-a"


@pytest.fixture
def vapid_keys():
    return generate_vapid_keys()


@pytest.fixture
def make_client(tmp_path, vapid_keys):
    """Build a TestClient; the engine is created here so it binds to the client's loop."""

    def _make(relay: FakeRelay, configured: bool = True) -> TestClient:
        settings = Settings(
            data_path=str(tmp_path),
            vapid_public_key=vapid_keys["public_key"] if configured else None,
            vapid_private_key=vapid_keys["private_key"] if configured else None,
            vapid_subject=SUBJECT,
        )
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
        app = create_app(settings=settings, engine=engine, http_client_factory=relay.client_factory())
        return TestClient(app)

    return _make


def _register(client, browser, owner_id="U", endpoint=ENDPOINT):
    return client.post("/api/push/subscriptions", json={
        "owner_id": owner_id,
        "endpoint": endpoint,
        "keys": {"p256dh": browser.p256dh, "auth": browser.auth},
    })


class TestHealthAndKeys:
    def test_health(self, make_client):
        with make_client(FakeRelay()) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "push_configured": True}

    def test_vapid_public_key(self, make_client, vapid_keys):
        with make_client(FakeRelay()) as client:
            response = client.get("/api/push/vapid-public-key")
        assert response.status_code == 200
        assert response.json() == {"public_key": vapid_keys["public_key"]}

    def test_unconfigured(self, make_client):
        with make_client(FakeRelay(), configured=False) as client:
            assert client.get("/api/push/vapid-public-key").status_code == 404
            assert client.get("/health").json()["push_configured"] is False


class TestSubscriptions:
    def test_register_is_idempotent_per_endpoint(self, make_client):
        browser = BrowserSubscription()
        with make_client(FakeRelay()) as client:
            first = _register(client, browser)
            second = _register(client, BrowserSubscription())

        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["subscription_id"] == second.json()["subscription_id"]

    def test_register_rejects_bad_keys(self, make_client):
        with make_client(FakeRelay()) as client:
            response = client.post("/api/push/subscriptions", json={
                "owner_id": "U",
                "endpoint": ENDPOINT,
                "keys": {"p256dh": "AAAA", "auth": "AAAA"},
            })
        assert response.status_code == 422

    def test_register_requires_keys(self, make_client):
        with make_client(FakeRelay()) as client:
            response = client.post("/api/push/subscriptions", json={"owner_id": "U", "endpoint": ENDPOINT})
        assert response.status_code == 422

    def test_unregister(self, make_client, browser):
        with make_client(FakeRelay()) as client:
            _register(client, browser)
            params = {"owner_id": "U", "endpoint": ENDPOINT}

            removed = client.delete("/api/push/subscriptions", params=params)
            assert removed.status_code == 200
            assert removed.json() == {"success": True, "removed": 1}

            assert client.delete("/api/push/subscriptions", params=params).status_code == 404


class TestSend:
    def test_reservation_key_delivers_once(self, make_client, browser):
        relay = FakeRelay()
        request = {
            "owner_id": "U",
            "reservation_key": "reservation_confirmed:reservation:r-1",
            "payload": {"title": "Confirmed", "body": "Table for two", "data": {"url": "/r/1"}},
        }
        with make_client(relay) as client:
            _register(client, browser)
            first = client.post("/api/push/send", json=request)
            second = client.post("/api/push/send", json=request)

        assert first.json() == {"sent": 1, "failed": 0, "skipped_duplicate": False}
        assert second.json() == {"sent": 0, "failed": 0, "skipped_duplicate": True}
        assert len(relay.requests) == 1

        message = json.loads(decrypt_request(relay.requests[0], browser))
        assert message["title"] == "Confirmed"
        assert message["data"] == {"url": "/r/1"}

    def test_tag_deduplicates(self, make_client, browser):
        relay = FakeRelay()
        request = {"owner_id": "U", "payload": {"title": "t", "body": "b", "tag": "n:offer:9"}}
        with make_client(relay) as client:
            _register(client, browser)
            client.post("/api/push/send", json=request)
            second = client.post("/api/push/send", json=request)

        assert second.json()["skipped_duplicate"] is True
        assert len(relay.requests) == 1

    def test_event_type_derives_key(self, make_client, browser):
        relay = FakeRelay()
        confirmed = {
            "owner_id": "U",
            "event_type": "reservation_confirmed",
            "entity_type": "reservation",
            "entity_id": "r-1",
            "payload": {"title": "Confirmed", "body": "Table for two"},
        }
        welcome = {"owner_id": "U", "event_type": "welcome", "payload": {"title": "Hi", "body": "Welcome aboard"}}
        with make_client(relay) as client:
            _register(client, browser)
            first = client.post("/api/push/send", json=confirmed)
            repeat = client.post("/api/push/send", json=confirmed)
            other = client.post("/api/push/send", json=welcome)

        assert first.json()["sent"] == 1
        assert repeat.json()["skipped_duplicate"] is True
        assert other.json()["sent"] == 1
        assert len(relay.requests) == 2
        assert json.loads(decrypt_request(relay.requests[0], browser))["tag"] == "n:reservation_confirmed:reservation:r-1"

    def test_gone_subscription_is_dropped(self, make_client, browser):
        relay = FakeRelay()
        relay.statuses[ENDPOINT] = 410
        request = {"owner_id": "U", "payload": {"title": "t", "body": "b"}}
        with make_client(relay) as client:
            _register(client, browser)
            first = client.post("/api/push/send", json=request)
            second = client.post("/api/push/send", json=request)

        assert first.json() == {"sent": 0, "failed": 1, "skipped_duplicate": False}
        assert second.json() == {"sent": 0, "failed": 0, "skipped_duplicate": False}
        assert len(relay.requests) == 1

    def test_invalid_request(self, make_client):
        with make_client(FakeRelay()) as client:
            response = client.post("/api/push/send", json={"owner_id": "U"})
        assert response.status_code == 422

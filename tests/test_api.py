"""
Tests for API endpoints
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from conftest import BONAMOUSSADI, YAOUNDE, make_event, to_data_url

from adl.api.main import create_app
from adl.core.config import Settings
from adl.core.exceptions import StorageUnavailableError
from adl.crowdsource.photo_store import MemoryPhotoStore
from adl.crowdsource.submission import SubmissionService
from adl.database.memory import MemoryStore


PROXY_SECRET = "proxy-secret"
ALICE_HEADERS = {"X-Authenticated-User": "alice", "X-Auth-Proxy-Secret": PROXY_SECRET}
ADMIN_HEADERS = {
    "X-Authenticated-User": "root",
    "X-Authenticated-Admin": "true",
    "X-Auth-Proxy-Secret": PROXY_SECRET,
}


def build_client(store, proxy_secret=PROXY_SECRET):
    config = Settings(auth_proxy_secret=proxy_secret)
    service = SubmissionService(
        store=store,
        photo_store=MemoryPhotoStore(),
        config=config,
        ip_locator=AsyncMock(return_value=None),
    )
    return TestClient(create_app(config=config, service=service))


class TestAPIEndpoints:
    """Test suite for API endpoints."""

    def setup_method(self):
        """Setup test fixtures."""
        self.store = MemoryStore(events=[make_event("e1", point_id="p1", user_id="bob")])
        self.client = build_client(self.store)

    def test_health(self):
        """Test health reports storage status."""
        response = self.client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["db"] == "ok"

    def test_create_requires_auth(self, pharmacy_create_body):
        """Test anonymous submissions are rejected."""
        response = self.client.post("/api/submissions", json=pharmacy_create_body)

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_create(self, pharmacy_create_body):
        """Test a submission returns 201 with the event."""
        response = self.client.post("/api/submissions", json=pharmacy_create_body, headers=ALICE_HEADERS)

        assert response.status_code == 201
        body = response.json()
        assert body["eventType"] == "CREATE_EVENT"
        assert body["userId"] == "alice"
        assert body["details"]["hasPhoto"] is True

    def test_idempotent_replay(self, pharmacy_create_body):
        """Test a replayed key returns 200 with the original event."""
        headers = dict(ALICE_HEADERS, **{"Idempotency-Key": "abc"})
        first = self.client.post("/api/submissions", json=pharmacy_create_body, headers=headers)
        second = self.client.post("/api/submissions", json=pharmacy_create_body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

    def test_invalid_json(self):
        """Test unparseable bodies."""
        response = self.client.post(
            "/api/submissions",
            content=b"{not json",
            headers=dict(ALICE_HEADERS, **{"Content-Type": "application/json"}),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    def test_fraud_rejection_code(self, pharmacy_create_body):
        """Test location rejections carry their code."""
        body = dict(pharmacy_create_body, location={"latitude": 4.0999, "longitude": 9.7600})

        response = self.client.post("/api/submissions", json=body, headers=ALICE_HEADERS)

        assert response.status_code == 400
        assert response.json() == {
            "error": "Photo GPS coordinates do not match submission location",
            "code": "location_rejected",
        }

    def test_list_points(self):
        """Test the default listing returns projected points."""
        response = self.client.get("/api/submissions")

        assert response.status_code == 200
        points = response.json()
        assert [p["pointId"] for p in points] == ["p1"]
        assert points[0]["gaps"] == ["openingHours", "isOnDuty"]

    def test_list_points_radius(self):
        """Test radius query parameters."""
        params = {"lat": BONAMOUSSADI.latitude, "lng": BONAMOUSSADI.longitude, "radius": 0.01}
        assert len(self.client.get("/api/submissions", params=params).json()) == 1

        params["lat"] = 4.099
        assert self.client.get("/api/submissions", params=params).json() == []

    def test_scope_requires_admin(self):
        """Test expanded scopes."""
        assert self.client.get("/api/submissions", params={"scope": "global"}).status_code == 401
        assert self.client.get(
            "/api/submissions", params={"scope": "global"}, headers=ALICE_HEADERS
        ).status_code == 403
        assert self.client.get(
            "/api/submissions", params={"scope": "global"}, headers=ADMIN_HEADERS
        ).status_code == 200

    def test_events_view(self):
        """Test the events view is per-user."""
        assert self.client.get("/api/submissions", params={"view": "events"}).status_code == 401

        own = self.client.get("/api/submissions", params={"view": "events"}, headers=ALICE_HEADERS)
        assert own.json() == []

        admin = self.client.get("/api/submissions", params={"view": "events"}, headers=ADMIN_HEADERS)
        assert [e["id"] for e in admin.json()] == ["e1"]

    def test_admin_events_view(self):
        """Test the forensics view is admin-only."""
        assert self.client.get(
            "/api/submissions", params={"view": "admin_events"}, headers=ALICE_HEADERS
        ).status_code == 403

        response = self.client.get("/api/submissions", params={"view": "admin_events"}, headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert "fraudCheck" in response.json()[0]

    def test_get_submission(self):
        """Test point and event lookups."""
        point = self.client.get("/api/submissions/p1", headers=ALICE_HEADERS)
        assert point.status_code == 200
        assert point.json()["pointId"] == "p1"

        event = self.client.get("/api/submissions/e1", params={"view": "event"}, headers=ALICE_HEADERS)
        assert event.status_code == 403

        missing = self.client.get("/api/submissions/zzz", headers=ALICE_HEADERS)
        assert missing.status_code == 404
        assert missing.json() == {"error": "Submission not found"}

    def test_get_requires_auth(self):
        """Test single lookups need a session."""
        assert self.client.get("/api/submissions/p1").status_code == 401

    def test_put_compat(self):
        """Test the compatibility enrichment endpoint."""
        response = self.client.put(
            "/api/submissions/p1",
            json={"details": {"openingHours": "24/7"}},
            headers=ALICE_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["source"] == "compat_put"
        assert response.json()["eventType"] == "ENRICH_EVENT"

    def test_put_missing_details(self):
        """Test the compatibility endpoint requires details."""
        response = self.client.put("/api/submissions/p1", json={}, headers=ALICE_HEADERS)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing details payload"}


class TestStorageUnavailable:
    """Test suite for storage outages."""

    def test_503(self):
        """Test storage outages map to a retryable 503."""
        store = MagicMock()
        store.get_point_events = AsyncMock(side_effect=StorageUnavailableError())
        store.get_legacy_submissions = AsyncMock(return_value=[])
        client = build_client(store)

        response = client.get("/api/submissions")

        assert response.status_code == 503
        assert response.json() == {
            "error": "Storage service temporarily unavailable",
            "code": "storage_unavailable",
        }

    def test_health_503(self):
        """Test health reports an unreachable store."""
        store = MagicMock()
        store.ping = AsyncMock(return_value=False)
        client = build_client(store)

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["db"] == "error"


class TestLifespan:
    """Test suite for startup and shutdown."""

    def test_store_initialized_and_closed(self):
        """Test the store is prepared on startup and closed on shutdown."""
        store = MemoryStore()
        store.initialize = AsyncMock()
        store.close = AsyncMock()

        with build_client(store) as client:
            assert client.get("/health").status_code == 200
            store.initialize.assert_awaited_once()

        store.close.assert_awaited_once()


class TestHeaderAuthentication:
    """Test suite for identity headers from the session proxy."""

    def setup_method(self):
        """Setup test fixtures."""
        self.store = MemoryStore(events=[make_event("e1", point_id="p1", user_id="bob")])

    def _outside_geofence_body(self, body, plain_jpeg):
        return dict(body, location=YAOUNDE.to_dict(), imageBase64=to_data_url(plain_jpeg))

    def test_admin_claim_ignored_without_proxy_secret(self, pharmacy_create_body, plain_jpeg):
        """Test a client-sent admin header grants nothing when no proxy secret is configured."""
        client = build_client(self.store, proxy_secret=None)
        headers = {"X-Authenticated-User": "anyone", "X-Authenticated-Admin": "true"}

        response = client.post(
            "/api/submissions",
            json=self._outside_geofence_body(pharmacy_create_body, plain_jpeg),
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "location_rejected"
        assert client.get("/api/submissions", params={"view": "admin_events"}, headers=headers).status_code == 403
        assert client.get("/api/submissions", params={"view": "events"}, headers=headers).json() == []

    def test_headers_without_secret_rejected(self, pharmacy_create_body, plain_jpeg):
        """Test identity headers missing the proxy secret are treated as anonymous."""
        client = build_client(self.store)
        spoofed = {"X-Authenticated-User": "anyone", "X-Authenticated-Admin": "true"}

        response = client.post(
            "/api/submissions",
            json=self._outside_geofence_body(pharmacy_create_body, plain_jpeg),
            headers=spoofed,
        )

        assert response.status_code == 401
        assert client.get(
            "/api/submissions", params={"view": "admin_events"}, headers=spoofed
        ).status_code == 401
        wrong_secret = dict(spoofed, **{"X-Auth-Proxy-Secret": "guess"})
        assert client.get(
            "/api/submissions", params={"view": "events"}, headers=wrong_secret
        ).status_code == 401

    def test_admin_with_proxy_secret(self, pharmacy_create_body, plain_jpeg):
        """Test admin sessions vouched for by the proxy bypass the geofence."""
        client = build_client(self.store)

        response = client.post(
            "/api/submissions",
            json=self._outside_geofence_body(pharmacy_create_body, plain_jpeg),
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["userId"] == "root"

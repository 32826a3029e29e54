"""Tests for the security API endpoints."""

import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, "src")

from request_guard.api import create_app
from request_guard.config.settings import Settings
from request_guard.security.events import InMemoryEventSink

ADMIN_TOKEN = "t" * 48
AUTH = {"Authorization": f"Bearer {ADMIN_TOKEN}"}


def _settings(**overrides):
    values = {"environment": "production", "admin_token": ADMIN_TOKEN}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def event_store():
    return InMemoryEventSink()


@pytest.fixture
def app(clock, event_store):
    return create_app(_settings(), clock=clock, event_store=event_store)


@pytest.fixture
def client(app):
    return TestClient(app)


def _error(response):
    return response.json()["error"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "environment": "production"}

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestAdminAuth:
    """Admin routes require the bearer admin token."""

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Bearer wrong"},
            {"Authorization": ADMIN_TOKEN},
            {"Authorization": f"Basic {ADMIN_TOKEN}"},
        ],
    )
    def test_rejected(self, client, headers):
        response = client.get("/v1/security/events", headers=headers)
        assert response.status_code == 401
        assert _error(response)["error"] == "UNAUTHORIZED"

    def test_no_token_configured(self, clock):
        app = create_app(_settings(admin_token=None), clock=clock)
        response = TestClient(app).get("/v1/security/events", headers={"Authorization": "Bearer "})
        assert response.status_code == 401


class TestScan:
    """Tests for POST /v1/security/scan."""

    def test_clean_input(self, client):
        response = client.post("/v1/security/scan", json={"fields": {"title": "Buy milk"}}, headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "allow"
        assert data["findings"] == []
        assert data["sanitized_fields"] == {"title": "Buy milk"}

    def test_critical_threat_forbidden(self, client):
        response = client.post(
            "/v1/security/scan",
            json={"fields": {"q": "1 UNION SELECT password FROM users"}},
            headers=AUTH,
        )
        assert response.status_code == 403
        error = _error(response)
        assert error["error"] == "THREAT_DETECTED"
        assert error["error_class"] == "authentication"
        assert error["message"] == "Request blocked for security reasons."
        assert "UNION" not in response.text

    def test_high_threat_bad_request(self, client):
        response = client.post("/v1/security/scan", json={"fields": {"u": "admin OR 1=1"}}, headers=AUTH)
        assert response.status_code == 400
        assert _error(response)["error_class"] == "validation"

    def test_dry_run_returns_decision(self, client):
        response = client.post(
            "/v1/security/scan?dry_run=true",
            json={"fields": {"q": "<script>alert(1)</script>"}},
            headers=AUTH,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "reject"
        assert any(f["type"] == "XSS" and f["severity"] == "CRITICAL" for f in data["findings"])

    def test_rate_limited(self, clock):
        app = create_app(_settings(rate_limit_max_requests=2), clock=clock)
        client = TestClient(app)
        for _ in range(2):
            assert client.post("/v1/security/scan", json={"fields": {"t": "ok"}}, headers=AUTH).status_code == 200
        response = client.post("/v1/security/scan", json={"fields": {"t": "ok"}}, headers=AUTH)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert _error(response)["details"]["retry_after_seconds"] == 60

    def test_sanitizes_in_production(self, client):
        response = client.post("/v1/security/scan", json={"fields": {"t": "Tom & Jerry"}}, headers=AUTH)
        assert response.json()["sanitized_fields"] == {"t": "Tom &amp; Jerry"}


class TestLoginHooks:
    """Tests for /v1/auth/precheck and /v1/auth/outcome."""

    def _fail(self, client, identity="alice"):
        return client.post(
            "/v1/auth/outcome",
            json={"identity": identity, "success": False, "reason": "bad_password"},
            headers=AUTH,
        )

    def test_precheck_allowed(self, client):
        response = client.post("/v1/auth/precheck", json={"identity": "alice"})
        assert response.status_code == 200
        assert response.json() == {"allowed": True, "risk_score": 20, "risk_level": "minimal"}

    def test_failure_reports_remaining(self, client):
        response = self._fail(client)
        assert response.status_code == 401
        error = _error(response)
        assert error["error"] == "AUTHENTICATION_FAILED"
        assert error["message"] == "Invalid credentials."
        assert error["details"]["remaining_attempts"] == 4

    def test_lockout(self, client, clock):
        for _ in range(5):
            self._fail(client)

        response = client.post("/v1/auth/precheck", json={"identity": "alice"})
        assert response.status_code == 401
        assert _error(response)["error"] == "ACCOUNT_LOCKED"
        assert response.headers["Retry-After"] == "1800"

        clock.advance(minutes=31)
        response = client.post("/v1/auth/precheck", json={"identity": "alice"})
        assert response.status_code == 200
        assert response.json()["risk_score"] == 0

    def test_success(self, client):
        response = client.post(
            "/v1/auth/outcome",
            json={"identity": "alice", "success": True, "client_ip": "198.51.100.7", "user_agent": "app"},
            headers=AUTH,
        )
        assert response.status_code == 200
        assert response.json()["recorded"] is True

        stats = client.get("/v1/security/accounts/alice", headers=AUTH).json()
        assert stats["recent_login_ips"] == ["198.51.100.7"]

    def test_outcome_requires_admin(self, client):
        response = client.post("/v1/auth/outcome", json={"identity": "alice", "success": True})
        assert response.status_code == 401

    def test_suspicious_login_forbidden(self, client):
        for _ in range(4):
            client.post(
                "/v1/auth/outcome",
                json={"identity": "alice", "success": False, "client_ip": "7.7.7.7", "user_agent": "bot"},
                headers=AUTH,
            )
        response = client.post("/v1/auth/precheck", json={"identity": "alice"})
        assert response.status_code == 403
        assert _error(response)["error"] == "SUSPICIOUS_ACTIVITY"

    def test_proxy_header(self, clock):
        app = create_app(_settings(trusted_proxy_header="X-Forwarded-For"), clock=clock)
        client = TestClient(app)
        client.post(
            "/v1/auth/outcome",
            json={"identity": "alice", "success": True},
            headers={**AUTH, "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )
        stats = client.get("/v1/security/accounts/alice", headers=AUTH).json()
        assert stats["recent_login_ips"] == ["203.0.113.9"]


class TestAccounts:
    """Tests for account administration routes."""

    def test_stats_and_unlock(self, client):
        for _ in range(5):
            client.post(
                "/v1/auth/outcome",
                json={"identity": "alice", "success": False},
                headers=AUTH,
            )
        stats = client.get("/v1/security/accounts/alice", headers=AUTH).json()
        assert stats["identity"] == "alice"
        assert stats["is_locked"] is True
        assert stats["failed_login_attempts"] == 5

        response = client.post("/v1/security/accounts/alice/unlock", headers=AUTH)
        assert response.json() == {"identity": "alice", "was_locked": True}
        assert client.get("/v1/security/accounts/alice", headers=AUTH).json()["is_locked"] is False

    def test_unknown_account(self, client):
        stats = client.get("/v1/security/accounts/nobody", headers=AUTH).json()
        assert stats["failed_login_attempts"] == 0
        assert stats["is_locked"] is False


class TestEvents:
    """Tests for the security event routes."""

    def test_events_recorded(self, client):
        client.post("/v1/auth/outcome", json={"identity": "alice", "success": False}, headers=AUTH)
        response = client.get("/v1/security/events", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["events"][0]["type"] == "LOGIN_FAILURE"

    def test_filter_by_type(self, client):
        client.post("/v1/auth/outcome", json={"identity": "alice", "success": False}, headers=AUTH)
        client.post("/v1/auth/outcome", json={"identity": "alice", "success": True}, headers=AUTH)
        data = client.get("/v1/security/events?event_type=LOGIN_SUCCESS", headers=AUTH).json()
        assert [e["type"] for e in data["events"]] == ["LOGIN_SUCCESS"]

    def test_unknown_type(self, client):
        response = client.get("/v1/security/events?event_type=NOPE", headers=AUTH)
        assert response.status_code == 400
        assert "LOGIN_FAILURE" in _error(response)["details"]["allowed"]

    @pytest.mark.parametrize("limit", [0, 5000])
    def test_limit_bounds(self, client, limit):
        response = client.get(f"/v1/security/events?limit={limit}", headers=AUTH)
        assert response.status_code == 400

    def test_stats(self, client, event_store):
        client.post("/v1/security/scan", json={"fields": {"q": "it's"}}, headers=AUTH)
        client.post("/v1/auth/outcome", json={"identity": "alice", "success": False}, headers=AUTH)
        stats = client.get("/v1/security/events/stats", headers=AUTH).json()
        assert stats["total_events"] == 2
        assert stats["distinct_identities"] == 1
        assert stats["by_type"] == {"SUSPICIOUS_ACTIVITY": 1, "LOGIN_FAILURE": 1}
        assert len(event_store.events) == 2

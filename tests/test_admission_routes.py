"""Integration tests for the admission API routes.

Notes:
- The app is built once per module; limiter and violation log are swapped
  per test through dependency overrides.
- Checks at the HTTP level are always answered with 200; the verdict is in
  the body.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from admission.core.rate_limit import get_ip_blocklist, get_rate_limiter, get_violation_log
from admission.main import app


@pytest.fixture
def client(limiter, violation_log, blocklist) -> TestClient:
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_violation_log] = lambda: violation_log
    app.dependency_overrides[get_ip_blocklist] = lambda: blocklist
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health_ok(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAdmissionCheck:
    def test_identifier_scope_end_to_end(self, client: TestClient) -> None:
        payload = {"scope": "identifier", "identifier": "test-user", "limit": 10, "window_ms": 60_000}

        decisions = [client.post("/v1/admission/check", json=payload).json() for _ in range(11)]

        assert [d["allowed"] for d in decisions[:10]] == [True] * 10
        assert [d["remaining"] for d in decisions[:10]] == list(range(9, -1, -1))
        last = decisions[10]
        assert last["allowed"] is False
        assert last["remaining"] == 0
        assert last["retry_after_ms"] > 0
        assert last["retry_after_seconds"] == 60
        assert last["denied_by"] == "quota"

    def test_user_scope(self, client: TestClient) -> None:
        payload = {"scope": "user", "user_id": "user-1", "action": "login", "limit": 1, "window_ms": 60_000}

        assert client.post("/v1/admission/check", json=payload).json()["allowed"] is True
        assert client.post("/v1/admission/check", json=payload).json()["allowed"] is False

        other = {**payload, "action": "register"}
        assert client.post("/v1/admission/check", json=other).json()["allowed"] is True

    def test_ip_scope_uses_configured_defaults(self, client: TestClient) -> None:
        response = client.post("/v1/admission/check", json={"scope": "ip", "ip": "192.168.1.1"})

        body = response.json()
        assert response.status_code == 200
        assert body["scope"] == "ip"
        assert body["limit"] == 200
        assert body["remaining"] == 199

    def test_burst_limit(self, client: TestClient) -> None:
        payload = {
            "scope": "identifier",
            "identifier": "test-burst",
            "limit": 100,
            "window_ms": 60_000,
            "burst_limit": 5,
            "burst_window_ms": 1_000,
        }

        decisions = [client.post("/v1/admission/check", json=payload).json() for _ in range(6)]

        assert all(d["allowed"] for d in decisions[:5])
        assert decisions[5]["allowed"] is False
        assert decisions[5]["denied_by"] == "burst"
        assert decisions[5]["retry_after_ms"] == 1_000

    def test_zero_limit_denies(self, client: TestClient) -> None:
        payload = {"scope": "identifier", "identifier": "test-zero", "limit": 0, "window_ms": 60_000}

        body = client.post("/v1/admission/check", json=payload).json()

        assert body["allowed"] is False
        assert body["remaining"] == 0

    def test_empty_identifier_allowed(self, client: TestClient) -> None:
        payload = {"scope": "identifier", "identifier": "", "limit": 10, "window_ms": 60_000}

        body = client.post("/v1/admission/check", json=payload).json()

        assert body["allowed"] is True
        assert body["remaining"] == 9

    def test_missing_scope_field_returns_400(self, client: TestClient) -> None:
        response = client.post("/v1/admission/check", json={"scope": "user", "user_id": "u"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "missing_scope_field"
        assert "action" in error["message"]

    def test_burst_rejected_for_user_scope(self, client: TestClient) -> None:
        payload = {"scope": "user", "user_id": "u", "action": "login", "burst_limit": 3}

        response = client.post("/v1/admission/check", json=payload)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "burst_not_supported"

    def test_unknown_scope_is_422(self, client: TestClient) -> None:
        response = client.post("/v1/admission/check", json={"scope": "tenant", "identifier": "x"})

        assert response.status_code == 422

    def test_denials_show_up_in_violations(self, client: TestClient) -> None:
        payload = {"scope": "ip", "ip": "10.0.0.9", "limit": 1, "window_ms": 60_000}
        client.post("/v1/admission/check", json=payload)
        client.post("/v1/admission/check", json=payload)

        response = client.get("/v1/admission/violations", params={"scope": "ip"})

        assert response.status_code == 200
        body = response.json()
        assert len(body["violations"]) == 1
        assert body["violations"][0]["path"] == "/v1/admission/check"
        assert "10.0.0.9" not in response.text
        assert body["summary"]["by_scope"] == {"ip": 1}


class TestAdminRoutes:
    def test_stats(self, client: TestClient) -> None:
        client.post("/v1/admission/check", json={"scope": "identifier", "identifier": "a"})
        client.post("/v1/admission/check", json={"scope": "identifier", "identifier": "b"})

        body = client.get("/v1/admission/stats").json()

        # the stats request itself is counted under the caller's IP
        assert body["tracked_keys"] == 3
        assert body["created"] == 3

    def test_reset_key(self, client: TestClient) -> None:
        payload = {"scope": "identifier", "identifier": "k", "limit": 1, "window_ms": 60_000}
        client.post("/v1/admission/check", json=payload)
        assert client.post("/v1/admission/check", json=payload).json()["allowed"] is False

        response = client.request(
            "DELETE",
            "/v1/admission/keys",
            json={"scope": "identifier", "identifier": "k"},
            headers={"X-User-ID": "admin-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"scope": "identifier", "removed": True}
        assert client.post("/v1/admission/check", json=payload).json()["allowed"] is True

    def test_reset_unknown_key(self, client: TestClient) -> None:
        response = client.request(
            "DELETE",
            "/v1/admission/keys",
            json={"scope": "ip", "ip": "203.0.113.7"},
        )

        assert response.status_code == 200
        assert response.json()["removed"] is False

    def test_admin_routes_are_ip_limited(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from admission.core import rate_limit as rate_limit_module

        monkeypatch.setattr(rate_limit_module.settings.rate_limit, "ip_requests", 1)

        assert client.get("/v1/admission/stats").status_code == 200
        blocked = client.get("/v1/admission/stats")

        assert blocked.status_code == 429
        assert "Retry-After" in blocked.headers
        assert blocked.json()["error"]["request_id"] == blocked.headers["X-Request-ID"]


class TestViolationReview:
    def _deny_once(self, client: TestClient) -> None:
        payload = {"scope": "identifier", "identifier": "r", "limit": 1, "window_ms": 60_000}
        client.post("/v1/admission/check", json=payload)
        client.post("/v1/admission/check", json=payload)

    def test_resolve_violation(self, client: TestClient) -> None:
        self._deny_once(client)
        violation_id = client.get("/v1/admission/violations").json()["violations"][0]["id"]

        response = client.post(f"/v1/admission/violations/{violation_id}/resolve")

        assert response.status_code == 200
        assert response.json()["resolved"] is True
        open_items = client.get("/v1/admission/violations", params={"resolved": "false"}).json()
        assert open_items["violations"] == []
        assert open_items["summary"]["unresolved"] == 0

    def test_resolve_unknown_violation_is_404(self, client: TestClient) -> None:
        response = client.post("/v1/admission/violations/does-not-exist/resolve")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "violation_not_found"


class TestBlockedIPs:
    def test_block_list_and_unblock(self, client: TestClient) -> None:
        created = client.post(
            "/v1/admission/blocked-ips", json={"ip": "203.0.113.7", "reason": "scanner"}
        )

        assert created.status_code == 201
        assert created.json()["reason"] == "scanner"
        assert "203.0.113.7" not in created.text

        listing = client.get("/v1/admission/blocked-ips")
        assert len(listing.json()["blocked_ips"]) == 1
        assert "203.0.113.7" not in listing.text

        removed = client.request("DELETE", "/v1/admission/blocked-ips", json={"ip": "203.0.113.7"})
        assert removed.json() == {"removed": True}
        assert client.get("/v1/admission/blocked-ips").json()["blocked_ips"] == []

    def test_block_is_recorded_as_violation(self, client: TestClient) -> None:
        client.post("/v1/admission/blocked-ips", json={"ip": "203.0.113.7", "reason": "scanner"})

        body = client.get("/v1/admission/violations", params={"denied_by": "blocked"}).json()

        assert len(body["violations"]) == 1
        assert body["violations"][0]["reason"] == "scanner"
        assert body["violations"][0]["path"] == "/v1/admission/blocked-ips"

    def test_blocked_client_refused_on_guarded_routes(self, client: TestClient) -> None:
        client.post("/v1/admission/blocked-ips", json={"ip": "203.0.113.7"})

        response = client.get("/v1/admission/stats", headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ip_blocked"

    def test_unblock_unknown_ip(self, client: TestClient) -> None:
        response = client.request("DELETE", "/v1/admission/blocked-ips", json={"ip": "203.0.113.9"})

        assert response.json() == {"removed": False}

    def test_empty_ip_rejected(self, client: TestClient) -> None:
        response = client.post("/v1/admission/blocked-ips", json={"ip": ""})

        assert response.status_code == 422

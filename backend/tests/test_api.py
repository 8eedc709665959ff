"""
HTTP-тесты: validate-admin, управление ключами, аудит, health.
"""
import asyncio

import jwt
import pytest
from fastapi.testclient import TestClient

from keyguard.main import create_app


@pytest.fixture
def client(services):
    asyncio.run(services.key_store.add_key("k1", make_current=True))
    with TestClient(create_app(services, start_scheduler=False)) as client:
        yield client


@pytest.fixture
def bearer(services):
    def make(user_id: str) -> dict:
        token = asyncio.run(services.tokens.issue(user_id))
        return {"Authorization": f"Bearer {token}"}
    return make


async def failing(*args, **kwargs):
    raise ConnectionError("lookup failed")


class TestValidateAdmin:

    def test_unauthenticated(self, client, audit_repo):
        response = client.post("/api/auth/validate-admin")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert audit_repo.attempts == []

    def test_invalid_token(self, client, audit_repo):
        response = client.post("/api/auth/validate-admin", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert audit_repo.attempts == []

    def test_admin(self, client, bearer, clock, audit_repo):
        response = client.post("/api/auth/validate-admin", headers=bearer("admin-1"))
        assert response.status_code == 200
        body = response.json()
        assert body["isAdmin"] is True
        assert body["userId"] == "admin-1"
        assert body["timestamp"] == int(clock.now().timestamp() * 1000)
        assert body["validationId"] == audit_repo.attempts[0].validation_id

    def test_customer(self, client, bearer):
        response = client.post("/api/auth/validate-admin", headers=bearer("customer-1"))
        assert response.status_code == 200
        assert response.json()["isAdmin"] is False

    def test_token_in_body(self, client, services):
        token = asyncio.run(services.tokens.issue("admin-2"))
        response = client.post("/api/auth/validate-admin", json={"token": token})
        assert response.status_code == 200
        assert response.json()["userId"] == "admin-2"

    def test_identity_comes_from_session(self, client, bearer):
        response = client.post(
            "/api/auth/validate-admin", headers=bearer("customer-1"), json={"userId": "admin-1"},
        )
        assert response.status_code == 400

    def test_malformed_body(self, client, bearer, audit_repo):
        response = client.post(
            "/api/auth/validate-admin",
            headers={**bearer("admin-1"), "Content-Type": "application/json"},
            content=b"{not json",
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}
        assert audit_repo.attempts == []

    def test_rate_limited(self, client, bearer, audit_repo):
        headers = bearer("admin-1")
        for _ in range(5):
            assert client.post("/api/auth/validate-admin", headers=headers).status_code == 200

        response = client.post("/api/auth/validate-admin", headers=headers)
        assert response.status_code == 429
        assert response.json()["retryAfter"] == 300
        assert response.headers["Retry-After"] == "300"
        assert len(audit_repo.attempts) == 6

    def test_all_tiers_fail(self, client, bearer, roles_repo, audit_repo):
        roles_repo.get_role_privileged = failing
        roles_repo.is_admin_rpc = failing
        roles_repo.get_role = failing

        response = client.post("/api/auth/validate-admin", headers=bearer("admin-1"))
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert len(audit_repo.attempts) == 1


class TestKeysApi:

    def test_requires_session(self, client):
        assert client.get("/api/keys/status").status_code == 401

    def test_requires_admin(self, client, bearer):
        assert client.get("/api/keys/status", headers=bearer("customer-1")).status_code == 403

    def test_status(self, client, bearer):
        response = client.get("/api/keys/status", headers=bearer("admin-1"))
        assert response.status_code == 200
        assert response.json() == [{"key_id": "k1", "needs_rotation": False, "days_until_rotation": 30}]

    def test_admin_guard_is_cached(self, client, bearer, audit_repo):
        headers = bearer("admin-1")
        for _ in range(8):
            assert client.get("/api/keys/status", headers=headers).status_code == 200
        assert len(audit_repo.attempts) == 1

    def test_list_hides_material(self, client, bearer):
        response = client.get("/api/keys", headers=bearer("admin-1"))
        assert response.status_code == 200
        [key] = response.json()
        assert key["key_id"] == "k1"
        assert key["rotation_frequency_days"] == 30
        assert "secret_enc" not in key

    def test_add_and_duplicate(self, client, bearer, services):
        headers = bearer("admin-1")
        response = client.post("/api/keys", headers=headers, json={"key_id": "k2", "algorithm": "HS384"})
        assert response.status_code == 201
        assert response.json() == {"key_id": "k2"}

        response = client.post("/api/keys", headers=headers, json={"key_id": "k2"})
        assert response.status_code == 409

        [created] = asyncio.run(services.audit.query(1, "created"))
        assert created.key_id == "k2"
        assert created.performed_by == "admin-1"

    def test_add_rejects_bad_key_id(self, client, bearer):
        response = client.post("/api/keys", headers=bearer("admin-1"), json={"key_id": "bad id!"})
        assert response.status_code == 422

    def test_rotate_returns_new_session_token(self, client, bearer, services):
        headers = bearer("admin-1")
        response = client.post("/api/keys/k1/rotate", headers=headers)
        assert response.status_code == 200
        assert response.json() == {"success": True, "key_id": "k1"}

        replacement = response.headers["X-Session-Token"]
        assert jwt.get_unverified_header(replacement)["kid"] == "k1"
        followup = client.get("/api/keys/status", headers={"Authorization": f"Bearer {replacement}"})
        assert followup.status_code == 200

    def test_old_token_gets_replacement_header(self, client, bearer, services):
        headers = bearer("admin-2")
        asyncio.run(services.key_store.rotate_key("k1"))

        response = client.get("/api/keys/status", headers=headers)
        assert response.status_code == 200
        assert "X-Session-Token" in response.headers

    def test_rotate_unknown(self, client, bearer):
        assert client.post("/api/keys/missing/rotate", headers=bearer("admin-1")).status_code == 404

    def test_make_current(self, client, bearer, services):
        headers = bearer("admin-1")
        client.post("/api/keys", headers=headers, json={"key_id": "k2"})

        response = client.post("/api/keys/k2/make-current", headers=headers)
        assert response.status_code == 200
        assert asyncio.run(services.key_store.current_key()).key_id == "k2"
        assert client.post("/api/keys/nope/make-current", headers=headers).status_code == 404

    def test_events(self, client, bearer):
        headers = bearer("admin-1")
        client.post("/api/keys/k1/rotate", headers=headers)

        response = client.get("/api/keys/events", params={"event_type": "rotated"}, headers=headers)
        assert response.status_code == 200
        assert [e["key_id"] for e in response.json()] == ["k1"]


class TestAuditApi:

    def test_attempts_and_stats(self, client, bearer):
        headers = bearer("admin-1")
        client.post("/api/auth/validate-admin", headers=bearer("customer-1"))

        attempts = client.get("/api/audit/attempts", params={"user_id": "customer-1"}, headers=headers)
        assert attempts.status_code == 200
        assert len(attempts.json()) == 1

        stats = client.get("/api/audit/stats", headers=headers).json()
        assert stats["total_attempts"] == 2
        assert stats["write_failures"] == 0

    def test_system_log(self, client, bearer):
        response = client.get("/api/audit/system-log", headers=bearer("admin-1"))
        assert response.status_code == 200
        assert response.json() == []


class TestSessionRefresh:

    def test_refresh(self, client, bearer):
        response = client.post("/api/auth/session/refresh", headers=bearer("customer-1"))
        assert response.status_code == 200
        token = response.json()["access_token"]
        assert response.headers["X-Session-Token"] == token


class TestHealth:

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["current_key"] == "k1"
        assert body["scheduler"] == {"running": False, "state": "idle"}

    def test_only_health_route(self, client):
        response = client.get("/api/favicon.ico")
        assert response.status_code == 404
        assert response.json() == {"detail": "Not Found"}


class TestLogout:

    def test_revoked_token_rejected(self, client, bearer):
        headers = bearer("admin-1")
        assert client.post("/api/auth/logout", headers=headers).status_code == 200

        response = client.post("/api/auth/validate-admin", headers=headers)
        assert response.status_code == 401

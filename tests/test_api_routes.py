"""
tests/test_api_routes.py -- Integration tests for the ApexGate HTTP API.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> SessionValidator / AuthorizationGate -> stores -> response model
serialization, and the shared {"error": {...}} envelope on every failure.

Coverage:
  - Auth: login success/failure, refresh rotation, logout revocation, /me
  - 401 for missing and malformed credentials on protected routes
  - Feature gate: upgrade-required payload, tier change visible on next request
  - Admin-only routes reject client users with AUTHZ_ADMIN_ONLY
  - Client management and user creation write audit entries
  - Audit read routes: filters, ordering, stats; no write route exists

Fixtures used (from conftest.py):
  - api_env: TestClient with an admin, a wingman tenant and its client user.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api.main import app
from audit.service import AuditLogService
from auth.dependencies import try_get_principal
from auth.tokens import create_access_token
from tenancy.models import Client
from tests.conftest import ADMIN_PASSWORD, CLIENT_PASSWORD, ApiEnv, bearer, make_user


@pytest.fixture
def client(api_env: ApiEnv) -> Generator[TestClient, None, None]:
    """The module's TestClient, with cookies cleared after each test.

    Login responses set the session cookie on the client; without the reset a
    later "unauthenticated" request would silently carry it.
    """
    yield api_env.client
    api_env.client.cookies.clear()


def _new_tenant(api_env: ApiEnv, tier: str) -> tuple[str, str]:
    """Create a tenant and a client user on it; return (client_id, token)."""
    cid = api_env.tenant_store.create_client(Client(company_name=f"{tier} test co", tier=tier))
    user = make_user(api_env.user_store, f"user-{cid}@test.example", client_id=cid)
    return cid, create_access_token(user)


class TestAuthentication:
    def test_login_success(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"email": "admin@apexgate.test", "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["access_token"] and data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert resp.headers["cache-control"] == "no-store"
        assert "access_token" in resp.cookies

    def test_login_unregistered_email(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"email": "foo@bar.com", "password": "Whatever1"})
        assert resp.status_code == 401
        assert resp.json() == {"error": {"code": "AUTH_INVALID_CREDENTIALS", "message": "Invalid credentials"}}

    def test_login_wrong_password_same_body(self, client: TestClient) -> None:
        wrong = client.post("/api/v1/auth/login", json={"email": "admin@apexgate.test", "password": "Nope12345"})
        unknown = client.post("/api/v1/auth/login", json={"email": "ghost@apexgate.test", "password": "Nope12345"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_login_validation_error_envelope(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"email": "admin@apexgate.test"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_me_for_client(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/auth/me", headers=bearer(api_env.client_token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["role"] == "client"
        assert data["client_id"] == api_env.tenant_id
        assert data["tier"] == "wingman"
        assert data["features"] == ["support_tickets", "eld_reports", "dispatch_board"]

    def test_me_missing_credential(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTH_TOKEN_MISSING"

    def test_me_malformed_credential(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me", headers=bearer("not.a.jwt"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTH_TOKEN_INVALID"

    def test_cookie_credential(self, client: TestClient, api_env: ApiEnv) -> None:
        client.cookies.set("access_token", api_env.client_token)
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["email"] == "driver@wingman.test"

    def test_refresh_rotation_and_reuse(self, client: TestClient) -> None:
        login = client.post("/api/v1/auth/login", json={"email": "driver@wingman.test", "password": CLIENT_PASSWORD})
        refresh_token = login.json()["refresh_token"]

        first = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert first.status_code == 200, first.text
        assert first.json()["refresh_token"] != refresh_token

        reused = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert reused.status_code == 401
        assert reused.json()["error"]["code"] == "AUTH_SESSION_EXPIRED"

    def test_logout_revokes_access_token(self, client: TestClient) -> None:
        login = client.post("/api/v1/auth/login", json={"email": "driver@wingman.test", "password": CLIENT_PASSWORD})
        token = login.json()["access_token"]
        client.cookies.clear()

        assert client.post("/api/v1/auth/logout", headers=bearer(token)).status_code == 200
        resp = client.get("/api/v1/auth/me", headers=bearer(token))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTH_TOKEN_INVALID"

    def test_soft_principal_dependency(self, api_env: ApiEnv) -> None:
        def scope(headers: list[tuple[bytes, bytes]]) -> dict:
            return {"type": "http", "method": "GET", "path": "/", "headers": headers, "app": app}

        token = api_env.client_token.encode()
        principal = try_get_principal(Request(scope([(b"authorization", b"Bearer " + token)])))
        assert principal is not None
        assert principal.client_id == api_env.tenant_id
        assert try_get_principal(Request(scope([]))) is None
        assert try_get_principal(Request(scope([(b"authorization", b"Bearer garbage")]))) is None


class TestFeatureGate:
    def test_feature_denied_with_upgrade_payload(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/features/ifta_reports", headers=bearer(api_env.client_token))
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "AUTHZ_TIER_UPGRADE_REQUIRED"
        assert error["feature"] == "ifta_reports"
        assert error["current_tier"] == "wingman"

    def test_feature_allowed(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/features/eld_reports", headers=bearer(api_env.client_token))
        assert resp.status_code == 200
        assert resp.json() == {"feature": "eld_reports", "allowed": True}

    def test_admin_bypass(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/features/csa_scores", headers=bearer(api_env.admin_token))
        assert resp.status_code == 200
        listing = client.get("/api/v1/features", headers=bearer(api_env.admin_token)).json()
        assert len(listing["features"]) == 11

    def test_unknown_feature(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/features/time_travel", headers=bearer(api_env.client_token))
        assert resp.status_code == 404

    def test_feature_requires_authentication(self, client: TestClient) -> None:
        resp = client.get("/api/v1/features/eld_reports")
        assert resp.status_code == 401

    def test_tier_upgrade_visible_on_next_request(self, client: TestClient, api_env: ApiEnv) -> None:
        cid, token = _new_tenant(api_env, "wingman")
        assert client.get("/api/v1/features/ifta_reports", headers=bearer(token)).status_code == 403

        resp = client.patch(
            f"/api/v1/clients/{cid}/tier",
            json={"tier": "guardian"},
            headers=bearer(api_env.admin_token),
        )
        assert resp.status_code == 200, resp.text
        assert client.get("/api/v1/features/ifta_reports", headers=bearer(token)).status_code == 200

    def test_deactivated_tenant_loses_access(self, client: TestClient, api_env: ApiEnv) -> None:
        cid, token = _new_tenant(api_env, "back_office_command")
        client.post(f"/api/v1/clients/{cid}/deactivate", headers=bearer(api_env.admin_token))
        resp = client.get("/api/v1/features/support_tickets", headers=bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["current_tier"] is None

    def test_client_user_without_tenant(self, client: TestClient, api_env: ApiEnv) -> None:
        orphan = make_user(api_env.user_store, "orphan@test.example", client_id=None)
        resp = client.get("/api/v1/features/eld_reports", headers=bearer(create_access_token(orphan)))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"


class TestAdminRoutes:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/v1/clients"),
            ("get", "/api/v1/audit/logs"),
            ("get", "/api/v1/audit/stats"),
            ("post", "/api/v1/users"),
        ],
    )
    def test_client_user_is_rejected(self, client: TestClient, api_env: ApiEnv, method: str, path: str) -> None:
        resp = getattr(client, method)(path, headers=bearer(api_env.client_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "AUTHZ_ADMIN_ONLY"

    def test_unauthenticated_is_401(self, client: TestClient) -> None:
        resp = client.get("/api/v1/clients")
        assert resp.status_code == 401

    def test_client_lifecycle_is_audited(self, client: TestClient, api_env: ApiEnv) -> None:
        headers = bearer(api_env.admin_token)
        created = client.post(
            "/api/v1/clients",
            json={"company_name": "Lifecycle Trucking", "tier": "wingman"},
            headers=headers,
        )
        assert created.status_code == 201, created.text
        cid = created.json()["id"]

        client.patch(f"/api/v1/clients/{cid}/tier", json={"tier": "apex_command"}, headers=headers)
        client.post(f"/api/v1/clients/{cid}/deactivate", headers=headers)

        detail = client.get(f"/api/v1/clients/{cid}", headers=headers).json()
        assert detail["tier"] == "apex_command"
        assert detail["is_active"] is False

        history = client.get(f"/api/v1/audit/logs/target/clients/{cid}", headers=headers).json()
        assert {e["action_type"] for e in history} == {"client_created", "tier_updated", "client_deactivated"}
        assert all(e["admin_id"] == str(api_env.admin.id) for e in history)

    def test_invalid_tier_is_400(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.patch(
            f"/api/v1/clients/{api_env.tenant_id}/tier",
            json={"tier": "platinum"},
            headers=bearer(api_env.admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_client_is_404(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/clients/does-not-exist", headers=bearer(api_env.admin_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    def test_create_user_is_audited(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"email": "new.dispatcher@wingman.test", "password": "Dispatch9x", "client_id": api_env.tenant_id},
            headers=bearer(api_env.admin_token),
        )
        assert resp.status_code == 201, resp.text
        user_id = resp.json()["id"]

        [entry] = client.get(f"/api/v1/audit/logs/target/users/{user_id}", headers=bearer(api_env.admin_token)).json()
        assert entry["action_type"] == "user_created"
        assert "password" not in str(entry["changes"]).lower()

    def test_create_user_removed_when_audit_fails(self, client: TestClient, api_env: ApiEnv, monkeypatch) -> None:
        class UnwritableAuditStore:
            def append(self, entry):
                raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(app.state, "audit_service", AuditLogService(UnwritableAuditStore()))
        resp = client.post(
            "/api/v1/users",
            json={"email": "unaudited@wingman.test", "password": "Dispatch9x", "client_id": api_env.tenant_id},
            headers=bearer(api_env.admin_token),
        )
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "SERVER_ERROR"
        assert api_env.user_store.get_by_email("unaudited@wingman.test") is None

    def test_create_user_weak_password(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"email": "weak@wingman.test", "password": "weak", "client_id": api_env.tenant_id},
            headers=bearer(api_env.admin_token),
        )
        assert resp.status_code == 400

    def test_create_user_unknown_tenant(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.post(
            "/api/v1/users",
            json={"email": "lost@wingman.test", "password": "Dispatch9x", "client_id": "nope"},
            headers=bearer(api_env.admin_token),
        )
        assert resp.status_code == 400


class TestAuditRoutes:
    def test_query_by_admin_with_limit(self, client: TestClient, api_env: ApiEnv) -> None:
        audit = app.state.audit_service
        for n in range(7):
            audit.log_ticket_assigned("A", f"t-{n}", "5")
        audit.log_ticket_assigned("B", "t-other", "5")

        resp = client.get("/api/v1/audit/logs", params={"admin_id": "A", "limit": 5}, headers=bearer(api_env.admin_token))
        assert resp.status_code == 200
        entries = resp.json()
        assert len(entries) == 5
        assert all(e["admin_id"] == "A" for e in entries)
        keys = [(e["timestamp"], e["id"]) for e in entries]
        assert keys == sorted(keys, reverse=True)

    def test_invalid_action_type_filter(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get(
            "/api/v1/audit/logs", params={"action_type": "rm_rf"}, headers=bearer(api_env.admin_token)
        )
        assert resp.status_code == 400

    def test_stats(self, client: TestClient, api_env: ApiEnv) -> None:
        resp = client.get("/api/v1/audit/stats", headers=bearer(api_env.admin_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == sum(data["by_action_type"].values())
        assert data["unique_admins"] == len(data["by_admin"])

    def test_recent_and_admin_routes(self, client: TestClient, api_env: ApiEnv) -> None:
        headers = bearer(api_env.admin_token)
        assert client.get("/api/v1/audit/logs/recent", params={"limit": 3}, headers=headers).status_code == 200
        assert len(client.get("/api/v1/audit/logs/recent", params={"limit": 3}, headers=headers).json()) <= 3
        assert client.get("/api/v1/audit/logs/admin/A", headers=headers).status_code == 200

    @pytest.mark.parametrize("method", ["post", "put", "patch", "delete"])
    def test_no_write_routes(self, client: TestClient, api_env: ApiEnv, method: str) -> None:
        resp = getattr(client, method)("/api/v1/audit/logs", headers=bearer(api_env.admin_token))
        assert resp.status_code == 405

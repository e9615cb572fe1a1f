"""
tests/conftest.py -- Shared test fixtures for ApexGate.

This module provides:
  - user_store / tenant_store / audit_store: isolated in-memory stores for unit tests
  - make_user(): create a user directly in a store (bypasses AuthService validation)
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_env: TestClient plus an admin, a wingman tenant and its client user

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient because it runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit tests run on one thread, so plain :memory: is enough there.

DEBUG must be set before any auth/core import so get_settings() can
auto-generate SECRET_KEY in dev mode instead of raising ValueError.
ALLOWED_HOSTS and LOGIN_RATE_LIMIT are loosened for the same reason: both are
read once when the app module is imported.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from itertools import count

# CRITICAL: Set these before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from audit.service import AuditLogService
from audit.store import AuditLogStore
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from tenancy.evaluator import AccessEvaluator
from tenancy.models import Client
from tenancy.store import TenantStore

ADMIN_PASSWORD = "AdminPass1"
CLIENT_PASSWORD = "ClientPass1"

_db_counter = count()


def _memory_url(prefix: str) -> str:
    """Unique named shared-memory SQLite URI."""
    return f"sqlite:///file:{prefix}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"


def make_user(store: UserStore, email: str, role: str = "client", client_id: str | None = None,
              password: str = CLIENT_PASSWORD, is_active: bool = True) -> User:
    user = User(
        email=email,
        role=role,
        client_id=client_id,
        hashed_password=hash_password(password),
        is_active=is_active,
    )
    user.id = store.create_user(user)
    return user


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Unit-test stores
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(_memory_url("unit_auth"))
    yield store
    store.close()


@pytest.fixture
def tenant_store() -> Generator[TenantStore, None, None]:
    store = TenantStore(_memory_url("unit_tenants"))
    yield store
    store.close()


@pytest.fixture
def audit_store() -> Generator[AuditLogStore, None, None]:
    store = AuditLogStore(_memory_url("unit_audit"))
    yield store
    store.close()


@pytest.fixture
def audit_service(audit_store: AuditLogStore) -> AuditLogService:
    return AuditLogService(audit_store)


@pytest.fixture
def evaluator(tenant_store: TenantStore) -> AccessEvaluator:
    return AccessEvaluator(tenant_store)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, tenant_store: TenantStore, audit_store: AuditLogStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state through the same
    wire_services() the real lifespan uses. The purge_task is a long-sleeping
    coroutine (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, user_store, tenant_store, audit_store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class ApiEnv:
    client: TestClient
    admin: User
    admin_token: str
    tenant_id: str
    client_user: User
    client_token: str
    user_store: UserStore
    tenant_store: TenantStore
    audit_store: AuditLogStore


@pytest.fixture(scope="module")
def api_env() -> Generator[ApiEnv, None, None]:
    """One TestClient per test module, backed by isolated shared-memory stores.

    Seeds an admin, a tenant on the wingman tier, and a client user attached
    to that tenant. Tokens are generated directly so tests do not depend on
    the login route.
    """
    user_store = UserStore(_memory_url("api_auth"))
    tenant_store = TenantStore(_memory_url("api_tenants"))
    audit_store = AuditLogStore(_memory_url("api_audit"))

    admin = make_user(user_store, "admin@apexgate.test", role="admin", password=ADMIN_PASSWORD)
    tenant_id = tenant_store.create_client(Client(company_name="Wingman Freight", tier="wingman"))
    client_user = make_user(user_store, "driver@wingman.test", client_id=tenant_id)

    app.router.lifespan_context = _patch_lifespan(user_store, tenant_store, audit_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            admin=admin,
            admin_token=create_access_token(admin),
            tenant_id=tenant_id,
            client_user=client_user,
            client_token=create_access_token(client_user),
            user_store=user_store,
            tenant_store=tenant_store,
            audit_store=audit_store,
        )

    user_store.close()
    tenant_store.close()
    audit_store.close()

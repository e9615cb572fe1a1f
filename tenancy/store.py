"""
tenancy/store.py -- SQLAlchemy Core persistence for tenants.

This is the tenant store the access evaluator reads from. Two properties the
evaluator relies on:

  - current_tier() is a single SELECT on its own connection. Nothing here
    memoizes a tier, so the value returned is whatever the last committed
    write left in the table.
  - update_tier() commits before returning. Once it returns, every later
    current_tier() call -- from any thread -- sees the new tier
    (read-your-writes).

Row-level tenant isolation for the rest of the portal's data belongs to the
database engine, not to this module.

Layer rule: no imports from api/, auth/, authz/, or audit/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import make_engine
from tenancy.models import Client

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_clients = Table(
    "clients",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("company_name", String(255), nullable=False),
    Column("contact_email", String(255)),
    Column("tier", String(50), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TenantStore:
    """Repository for Client records.

    Usage:
        store = TenantStore()
        client_id = store.create_client(Client(company_name="Acme Freight", tier="wingman"))
        store.current_tier(client_id)      # "wingman"
        store.update_tier(client_id, "guardian")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().tenant_db_url)
        _metadata.create_all(self.engine)

    def create_client(self, client: Client) -> str:
        """Insert a client and return its id (generated unless client.id is set)."""
        client_id = client.id or uuid.uuid4().hex
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _clients.insert().values(
                    id=client_id,
                    company_name=client.company_name,
                    contact_email=client.contact_email,
                    tier=client.tier,
                    is_active=1 if client.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return client_id

    def get_client(self, client_id: str) -> Client | None:
        with self.engine.connect() as conn:
            row = conn.execute(_clients.select().where(_clients.c.id == client_id)).fetchone()
        return _row_to_client(row) if row is not None else None

    def list_clients(self, include_inactive: bool = True) -> list[Client]:
        query = _clients.select().order_by(_clients.c.company_name)
        if not include_inactive:
            query = query.where(_clients.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_client(r) for r in rows]

    def current_tier(self, client_id: str) -> str | None:
        """Return the tier of an active client, or None if missing or inactive.

        One fresh read per call. Callers must not cache the result across
        requests.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_clients.c.tier, _clients.c.is_active).where(_clients.c.id == client_id)
            ).fetchone()
        if row is None or not row.is_active:
            return None
        return row.tier

    def update_tier(self, client_id: str, tier: str) -> bool:
        """Set a client's tier. Returns True if a row was updated.

        Invoked only from admin-facing client management flows.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _clients.update().where(_clients.c.id == client_id).values(tier=tier, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def set_active(self, client_id: str, is_active: bool) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _clients.update()
                .where(_clients.c.id == client_id)
                .values(is_active=1 if is_active else 0, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_client(self, client_id: str) -> bool:
        """Remove a client row. Only used to roll back a creation that could not be audited."""
        with self.engine.connect() as conn:
            result = conn.execute(_clients.delete().where(_clients.c.id == client_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_client(row) -> Client:
    return Client(
        id=row.id,
        company_name=row.company_name,
        contact_email=row.contact_email,
        tier=row.tier,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

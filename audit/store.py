"""
audit/store.py -- Append-only SQLAlchemy Core store for audit log entries.

The public surface is append() and the read methods. There is no update or
delete method, and none may be added: compliance review depends on entries
being permanent. (Retention, if ever required, belongs to the database
operator, not to application code.)

Ordering contract for every read: timestamp descending, then id descending.
Timestamps are written in one fixed-width ISO 8601 format (UTC, microsecond
precision), so lexical order on the column equals chronological order, and
the id tie-break keeps entries written in the same microsecond in insertion
order.

Layer rule: no imports from api/, auth/, authz/, or tenancy/.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from audit.models import AuditLogEntry, NewAuditLogEntry
from core.config import get_settings
from core.db import make_engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("admin_id", String(64), nullable=False),
    Column("action_type", String(50), nullable=False),
    Column("target_table", String(100), nullable=False),
    Column("target_id", String(64)),
    Column("changes", Text, nullable=False),  # JSON object
    Column("ip_address", String(45)),
    Column("timestamp", String(40), nullable=False),
    Index("ix_audit_logs_timestamp", "timestamp"),
    Index("ix_audit_logs_target", "target_table", "target_id"),
    Index("ix_audit_logs_admin", "admin_id"),
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the store's fixed-width UTC format."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditLogStore:
    """Append-only repository for AuditLogEntry.

    clock is injectable so tests can write entries at known instants; in
    production it is always the wall clock.
    """

    def __init__(self, db_url: str | None = None, clock: Callable[[], datetime] = _utc_now) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().audit_db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    def append(self, entry: NewAuditLogEntry) -> AuditLogEntry:
        """Insert one entry and return it as stored (with id and timestamp)."""
        timestamp = format_timestamp(self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    admin_id=entry.admin_id,
                    action_type=entry.action_type,
                    target_table=entry.target_table,
                    target_id=entry.target_id,
                    changes=json.dumps(entry.changes, default=str, sort_keys=True),
                    ip_address=entry.ip_address,
                    timestamp=timestamp,
                )
            )
            conn.commit()
            entry_id = result.inserted_primary_key[0]
        return AuditLogEntry(
            id=entry_id,
            admin_id=entry.admin_id,
            action_type=entry.action_type,
            target_table=entry.target_table,
            target_id=entry.target_id,
            changes=json.loads(json.dumps(entry.changes, default=str, sort_keys=True)),
            ip_address=entry.ip_address,
            timestamp=timestamp,
        )

    def query(
        self,
        admin_id: str | None = None,
        action_type: str | None = None,
        target_table: str | None = None,
        target_id: str | None = None,
        start: str | None = None,
        end: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Return matching entries, most recent first.

        start/end are inclusive bounds already in the store's timestamp format.
        limit=None returns every match.
        """
        query = _audit_logs.select()
        query = _apply_filters(query, admin_id, action_type, target_table, target_id, start, end)
        query = query.order_by(_audit_logs.c.timestamp.desc(), _audit_logs.c.id.desc())
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def action_admin_counts(
        self, start: str | None = None, end: str | None = None, **filters
    ) -> list[tuple[str, str, int]]:
        """Return (action_type, admin_id, count) per group in the window, counted in SQL."""
        entries = func.count(_audit_logs.c.id).label("entries")
        query = select(_audit_logs.c.action_type, _audit_logs.c.admin_id, entries)
        query = _apply_filters(
            query,
            filters.get("admin_id"),
            filters.get("action_type"),
            filters.get("target_table"),
            filters.get("target_id"),
            start,
            end,
        ).group_by(_audit_logs.c.action_type, _audit_logs.c.admin_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [(r.action_type, r.admin_id, r.entries) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _apply_filters(query, admin_id, action_type, target_table, target_id, start, end):
    if admin_id:
        query = query.where(_audit_logs.c.admin_id == admin_id)
    if action_type:
        query = query.where(_audit_logs.c.action_type == action_type)
    if target_table:
        query = query.where(_audit_logs.c.target_table == target_table)
    if target_id:
        query = query.where(_audit_logs.c.target_id == target_id)
    if start:
        query = query.where(_audit_logs.c.timestamp >= start)
    if end:
        query = query.where(_audit_logs.c.timestamp <= end)
    return query


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        admin_id=row.admin_id,
        action_type=row.action_type,
        target_table=row.target_table,
        target_id=row.target_id,
        changes=json.loads(row.changes) if row.changes else {},
        ip_address=row.ip_address,
        timestamp=row.timestamp,
    )

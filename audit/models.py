"""
audit/models.py -- Domain types for the administrative audit trail.

AuditLogEntry is frozen: once the store hands one back it is a permanent
record. There is no "update" shape anywhere in this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    """Whitelist of auditable administrative actions."""

    CLIENT_CREATED = "client_created"
    CLIENT_UPDATED = "client_updated"
    CLIENT_DEACTIVATED = "client_deactivated"
    CLIENT_REACTIVATED = "client_reactivated"
    TIER_UPDATED = "tier_updated"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_DELETED = "document_deleted"
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_STATUS_UPDATED = "ticket_status_updated"
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    SETTINGS_UPDATED = "settings_updated"


ACTION_TYPE_VALUES: frozenset[str] = frozenset(a.value for a in ActionType)


@dataclass(frozen=True)
class AuditLogEntry:
    """One administrative action.

    changes holds a before/after snapshot (or a single created/deleted
    snapshot) as a JSON-serialisable dict. timestamp is assigned by the store
    at append time, ISO 8601 UTC with microseconds.
    """

    id: int
    admin_id: str
    action_type: str
    target_table: str
    target_id: str | None
    changes: dict[str, Any]
    ip_address: str | None
    timestamp: str


@dataclass(frozen=True)
class NewAuditLogEntry:
    """The caller-supplied part of an entry, before the store assigns id and timestamp."""

    admin_id: str
    action_type: str
    target_table: str
    target_id: str | None = None
    changes: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None


@dataclass(frozen=True)
class AuditFilters:
    """Query window. Date bounds are inclusive; strings are ISO 8601."""

    admin_id: str | None = None
    action_type: str | None = None
    target_table: str | None = None
    target_id: str | None = None
    start_date: str | datetime | None = None
    end_date: str | datetime | None = None
    limit: int | None = None
    offset: int = 0


@dataclass(frozen=True)
class AuditStatistics:
    total: int
    by_action_type: dict[str, int]
    by_admin: dict[str, int]
    unique_admins: int

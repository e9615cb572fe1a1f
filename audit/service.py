"""
audit/service.py -- Audit Log Service: record and query administrative actions.

Writes are validated here before reaching the store: admin_id, action_type
and target_table are required and action_type must be on the ActionType
whitelist. Reads apply the store's fixed ordering (most recent first, id as
tie-break) and clamp page sizes to Settings.audit_max_limit.

Failures of the underlying store are logged and re-raised as
StoreUnavailableError. A lost audit write is never silently ignored.

Layer rule: no imports from api/, auth/, authz/, or tenancy/.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, time, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from audit.models import (
    ACTION_TYPE_VALUES,
    ActionType,
    AuditFilters,
    AuditLogEntry,
    AuditStatistics,
    NewAuditLogEntry,
)
from audit.store import AuditLogStore, format_timestamp
from core.config import get_settings
from core.errors import InvalidInputError, StoreUnavailableError

logger = logging.getLogger("apexgate.audit")

CLIENTS_TABLE = "clients"
DOCUMENTS_TABLE = "documents"
TICKETS_TABLE = "tickets"
USERS_TABLE = "users"


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------


def _parse_bound(value: str | datetime | None, *, end: bool) -> str | None:
    """Turn a user-supplied date bound into the store's timestamp format.

    A bare date ("2026-03-01") covers the whole day: as a start bound it means
    midnight, as an end bound the last microsecond of that day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    text = str(value).strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInputError(f"Invalid date: {text!r}. Use ISO 8601 (YYYY-MM-DD or full timestamp).") from None
    if end and len(text) == 10:
        parsed = datetime.combine(parsed.date(), time.max, tzinfo=timezone.utc)
    return format_timestamp(parsed)


def _clamp_limit(limit: int | None, default: int) -> int:
    settings = get_settings()
    if limit is None:
        return min(default, settings.audit_max_limit)
    if limit < 1:
        raise InvalidInputError("limit must be a positive integer")
    return min(limit, settings.audit_max_limit)


def _action_value(action_type: ActionType | str | None) -> str | None:
    if isinstance(action_type, ActionType):
        return action_type.value
    return action_type


def _filter_action(action_type: ActionType | str | None) -> str | None:
    """Validate an optional action_type read filter against the whitelist."""
    action = _action_value(action_type)
    if action and action not in ACTION_TYPE_VALUES:
        raise InvalidInputError(f"Invalid action type: {action}")
    return action


def _check_offset(offset: int) -> int:
    if offset < 0:
        raise InvalidInputError("offset must not be negative")
    return offset


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuditLogService:
    def __init__(self, store: AuditLogStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def log_action(
        self,
        admin_id: str | int | None,
        action_type: ActionType | str | None,
        target_table: str | None,
        target_id: str | int | None = None,
        changes: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> AuditLogEntry:
        """Append one entry. Raises InvalidInputError before anything is written."""
        action = _action_value(action_type)
        if admin_id is None or admin_id == "" or not action or not target_table:
            raise InvalidInputError("Missing required fields: admin_id, action_type, target_table")
        if action not in ACTION_TYPE_VALUES:
            raise InvalidInputError(f"Invalid action type: {action}")
        if changes is not None and not isinstance(changes, dict):
            raise InvalidInputError("changes must be an object")

        entry = NewAuditLogEntry(
            admin_id=str(admin_id),
            action_type=action,
            target_table=target_table,
            target_id=str(target_id) if target_id is not None else None,
            changes=changes or {},
            ip_address=ip_address,
        )
        try:
            stored = self._store.append(entry)
        except SQLAlchemyError as exc:
            logger.exception("Failed to write audit log: action=%s target=%s/%s", action, target_table, target_id)
            raise StoreUnavailableError() from exc
        logger.info(
            "Audit: admin=%s action=%s target=%s/%s",
            stored.admin_id,
            stored.action_type,
            stored.target_table,
            stored.target_id,
        )
        return stored

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_logs(self, filters: AuditFilters | None = None) -> list[AuditLogEntry]:
        filters = filters or AuditFilters()
        return self._read(
            admin_id=filters.admin_id,
            action_type=_filter_action(filters.action_type),
            target_table=filters.target_table,
            target_id=filters.target_id,
            start=_parse_bound(filters.start_date, end=False),
            end=_parse_bound(filters.end_date, end=True),
            limit=_clamp_limit(filters.limit, get_settings().audit_default_limit),
            offset=_check_offset(filters.offset),
        )

    def get_logs_for_target(
        self,
        target_table: str,
        target_id: str | int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """History of one record, most recent first, one page at a time.

        The page size defaults to Settings.audit_max_limit; walk longer
        histories with offset.
        """
        if not target_table or target_id is None or target_id == "":
            raise InvalidInputError("target_table and target_id are required")
        return self._read(
            target_table=target_table,
            target_id=str(target_id),
            limit=_clamp_limit(limit, get_settings().audit_max_limit),
            offset=_check_offset(offset),
        )

    def get_logs_for_admin(self, admin_id: str | int, limit: int | None = None) -> list[AuditLogEntry]:
        if admin_id is None or admin_id == "":
            raise InvalidInputError("admin_id is required")
        return self._read(
            admin_id=str(admin_id),
            limit=_clamp_limit(limit, get_settings().audit_admin_default_limit),
        )

    def get_recent_logs(self, limit: int | None = None) -> list[AuditLogEntry]:
        return self._read(limit=_clamp_limit(limit, get_settings().audit_default_limit))

    def get_log_statistics(self, filters: AuditFilters | None = None) -> AuditStatistics:
        """Counts over the filtered window. limit/offset in filters are ignored."""
        filters = filters or AuditFilters()
        try:
            groups = self._store.action_admin_counts(
                start=_parse_bound(filters.start_date, end=False),
                end=_parse_bound(filters.end_date, end=True),
                admin_id=filters.admin_id,
                action_type=_filter_action(filters.action_type),
                target_table=filters.target_table,
                target_id=filters.target_id,
            )
        except SQLAlchemyError as exc:
            logger.exception("Failed to read audit statistics")
            raise StoreUnavailableError() from exc
        by_action: Counter[str] = Counter()
        by_admin: Counter[str] = Counter()
        for action, admin, entries in groups:
            by_action[action] += entries
            by_admin[admin] += entries
        return AuditStatistics(
            total=sum(by_action.values()),
            by_action_type=dict(by_action),
            by_admin=dict(by_admin),
            unique_admins=len(by_admin),
        )

    def _read(self, **kwargs) -> list[AuditLogEntry]:
        try:
            return self._store.query(**kwargs)
        except SQLAlchemyError as exc:
            logger.exception("Failed to read audit logs")
            raise StoreUnavailableError() from exc

    # ------------------------------------------------------------------
    # Helpers for common actions
    # ------------------------------------------------------------------

    def log_client_created(self, admin_id, client_id, client_data: dict, ip_address: str | None = None):
        return self.log_action(
            admin_id, ActionType.CLIENT_CREATED, CLIENTS_TABLE, client_id, {"created": client_data}, ip_address
        )

    def log_client_updated(self, admin_id, client_id, before: dict, after: dict, ip_address: str | None = None):
        return self.log_action(
            admin_id,
            ActionType.CLIENT_UPDATED,
            CLIENTS_TABLE,
            client_id,
            {"before": before, "after": after},
            ip_address,
        )

    def log_client_deactivated(self, admin_id, client_id, ip_address: str | None = None):
        return self.log_action(
            admin_id,
            ActionType.CLIENT_DEACTIVATED,
            CLIENTS_TABLE,
            client_id,
            {"before": {"is_active": True}, "after": {"is_active": False}},
            ip_address,
        )

    def log_client_reactivated(self, admin_id, client_id, ip_address: str | None = None):
        return self.log_action(
            admin_id,
            ActionType.CLIENT_REACTIVATED,
            CLIENTS_TABLE,
            client_id,
            {"before": {"is_active": False}, "after": {"is_active": True}},
            ip_address,
        )

    def log_document_deleted(self, admin_id, document_id, document_data: dict, ip_address: str | None = None):
        return self.log_action(
            admin_id, ActionType.DOCUMENT_DELETED, DOCUMENTS_TABLE, document_id, {"deleted": document_data}, ip_address
        )

    def log_ticket_assigned(self, admin_id, ticket_id, assigned_to, ip_address: str | None = None):
        return self.log_action(
            admin_id, ActionType.TICKET_ASSIGNED, TICKETS_TABLE, ticket_id, {"assigned_to": assigned_to}, ip_address
        )

    def log_tier_updated(self, admin_id, client_id, old_tier, new_tier, ip_address: str | None = None):
        return self.log_action(
            admin_id,
            ActionType.TIER_UPDATED,
            CLIENTS_TABLE,
            client_id,
            {"before": {"tier": old_tier}, "after": {"tier": new_tier}},
            ip_address,
        )

    def log_user_created(self, admin_id, user_id, user_data: dict, ip_address: str | None = None):
        return self.log_action(
            admin_id, ActionType.USER_CREATED, USERS_TABLE, user_id, {"created": user_data}, ip_address
        )

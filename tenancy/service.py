"""
tenancy/service.py -- Admin-facing client management.

Every mutation here is followed by an audit entry written through
AuditLogService. The caller passes the acting admin's id and, when known,
the request's IP address.

Tenants and audit entries live in separate databases, so the pair cannot
share a transaction. When the audit write fails the tenant write is undone
(_revert) and the StoreUnavailableError is re-raised. An undo that fails
is logged with the client id for manual repair.

Tier changes take effect on commit: TenantStore.update_tier() returns only
after the write is durable, and the access evaluator never caches, so the
tenant's very next request is evaluated against the new tier.

Layer rule: no imports from api/, auth/, or authz/.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import SQLAlchemyError

from audit.service import AuditLogService
from core.errors import InvalidInputError, NotFoundError, StoreUnavailableError
from core.tiers import TIER_FEATURES, normalize_tier
from tenancy.models import Client
from tenancy.store import TenantStore

logger = logging.getLogger("apexgate.tenancy")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _require_tier(tier: str | None) -> str:
    normalized = normalize_tier(tier)
    if normalized is None or normalized not in TIER_FEATURES:
        raise InvalidInputError(f"Unknown tier: {tier!r}. Valid tiers: {', '.join(TIER_FEATURES)}")
    return normalized


def _snapshot(client: Client) -> dict:
    return {
        "company_name": client.company_name,
        "contact_email": client.contact_email,
        "tier": client.tier,
        "is_active": client.is_active,
    }


class ClientManagementService:
    def __init__(self, tenant_store: TenantStore, audit: AuditLogService) -> None:
        self._tenants = tenant_store
        self._audit = audit

    def _revert(self, what: str, undo, *args) -> None:
        """Undo a committed tenant write whose audit entry was not stored.

        A failing undo is logged; the caller re-raises the audit failure.
        """
        try:
            undo(*args)
        except SQLAlchemyError:
            logger.exception("Could not revert %s after audit failure", what)
            return
        logger.warning("Reverted %s: audit entry could not be written", what)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_client(self, client_id: str) -> Client:
        try:
            client = self._tenants.get_client(client_id)
        except SQLAlchemyError as exc:
            logger.exception("Tenant store unavailable while reading client %s", client_id)
            raise StoreUnavailableError() from exc
        if client is None:
            raise NotFoundError(f"Client not found: {client_id}")
        return client

    def list_clients(self, include_inactive: bool = True) -> list[Client]:
        try:
            return self._tenants.list_clients(include_inactive=include_inactive)
        except SQLAlchemyError as exc:
            logger.exception("Tenant store unavailable while listing clients")
            raise StoreUnavailableError() from exc

    # ------------------------------------------------------------------
    # Mutations (each one audited)
    # ------------------------------------------------------------------

    def create_client(
        self,
        admin_id: str | int,
        company_name: str,
        tier: str,
        contact_email: str | None = None,
        ip_address: str | None = None,
    ) -> Client:
        name = (company_name or "").strip()
        if not name:
            raise InvalidInputError("company_name is required")
        if contact_email and not _EMAIL_RE.match(contact_email):
            raise InvalidInputError("contact_email is not a valid email address")
        client = Client(company_name=name, tier=_require_tier(tier), contact_email=contact_email)
        try:
            client_id = self._tenants.create_client(client)
            created = self._tenants.get_client(client_id)
        except SQLAlchemyError as exc:
            logger.exception("Tenant store unavailable while creating client %r", name)
            raise StoreUnavailableError() from exc

        try:
            self._audit.log_client_created(admin_id, client_id, _snapshot(created), ip_address)
        except StoreUnavailableError:
            self._revert(f"creation of client {client_id}", self._tenants.delete_client, client_id)
            raise
        logger.info("Client created: id=%s tier=%s by admin=%s", client_id, created.tier, admin_id)
        return created

    def update_tier(
        self,
        admin_id: str | int,
        client_id: str,
        new_tier: str,
        ip_address: str | None = None,
    ) -> Client:
        """Change a tenant's tier. Unchanged tiers are a no-op and write no audit entry."""
        tier = _require_tier(new_tier)
        current = self.get_client(client_id)
        if current.tier == tier:
            return current
        try:
            self._tenants.update_tier(client_id, tier)
        except SQLAlchemyError as exc:
            logger.exception("Tenant store unavailable while updating tier for client %s", client_id)
            raise StoreUnavailableError() from exc

        try:
            self._audit.log_tier_updated(admin_id, client_id, current.tier, tier, ip_address)
        except StoreUnavailableError:
            self._revert(f"tier change of client {client_id}", self._tenants.update_tier, client_id, current.tier)
            raise
        logger.info("Tier updated: client=%s %s -> %s by admin=%s", client_id, current.tier, tier, admin_id)
        return self.get_client(client_id)

    def deactivate(self, admin_id: str | int, client_id: str, ip_address: str | None = None) -> Client:
        return self._set_active(admin_id, client_id, False, ip_address)

    def reactivate(self, admin_id: str | int, client_id: str, ip_address: str | None = None) -> Client:
        return self._set_active(admin_id, client_id, True, ip_address)

    def _set_active(self, admin_id, client_id: str, is_active: bool, ip_address: str | None) -> Client:
        current = self.get_client(client_id)
        if current.is_active == is_active:
            return current
        try:
            self._tenants.set_active(client_id, is_active)
        except SQLAlchemyError as exc:
            logger.exception("Tenant store unavailable while changing status of client %s", client_id)
            raise StoreUnavailableError() from exc

        log = self._audit.log_client_reactivated if is_active else self._audit.log_client_deactivated
        try:
            log(admin_id, client_id, ip_address)
        except StoreUnavailableError:
            self._revert(
                f"status change of client {client_id}", self._tenants.set_active, client_id, current.is_active
            )
            raise
        logger.info("Client %s %s by admin=%s", client_id, "reactivated" if is_active else "deactivated", admin_id)
        return self.get_client(client_id)

"""
tenancy/evaluator.py -- Access Evaluator: "may this tenant use this feature right now?"

Resolves a tenant's *current* tier from the tenant store and delegates the
membership question to core/tiers.py.

There is no cache in this class or between it and the store.
A tier change made by an admin must be visible to the very next evaluation,
from any request, so every call performs exactly one fresh read.

Unresolvable tenant (empty id, unknown id, deactivated) -> not granted, no
exception. A failing store is different: it raises StoreUnavailableError so
an outage surfaces as a server error instead of masquerading as a denial.

Layer rule: no imports from api/, auth/, authz/, or audit/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from core.errors import StoreUnavailableError
from core.tiers import has_feature_access

logger = logging.getLogger("apexgate.tenancy")

REASON_GRANTED = "granted"
REASON_NOT_IN_TIER = "feature_not_in_tier"
REASON_NO_TENANT = "tenant_not_found"
REASON_INVALID_REQUEST = "invalid_request"


class TierSource(Protocol):
    def current_tier(self, client_id: str) -> str | None: ...


@dataclass(frozen=True)
class TierAccess:
    """Result of one evaluation. Never stored; computed fresh per call."""

    granted: bool
    tier: str | None
    reason: str


class AccessEvaluator:
    def __init__(self, tenant_store: TierSource) -> None:
        self._tenants = tenant_store

    def get_client_tier(self, client_id: str | None) -> str | None:
        """Return the tenant's current tier, or None if it cannot be resolved."""
        if not client_id:
            return None
        try:
            return self._tenants.current_tier(client_id)
        except SQLAlchemyError as exc:
            logger.exception("Tenant store unavailable while reading tier for client %s", client_id)
            raise StoreUnavailableError() from exc

    def check(self, client_id: str | None, feature: str | None) -> TierAccess:
        if not client_id or not feature:
            return TierAccess(granted=False, tier=None, reason=REASON_INVALID_REQUEST)
        tier = self.get_client_tier(client_id)
        if tier is None:
            return TierAccess(granted=False, tier=None, reason=REASON_NO_TENANT)
        if has_feature_access(tier, feature):
            return TierAccess(granted=True, tier=tier, reason=REASON_GRANTED)
        return TierAccess(granted=False, tier=tier, reason=REASON_NOT_IN_TIER)

    def validate_tier_access(self, client_id: str | None, feature: str | None) -> bool:
        return self.check(client_id, feature).granted

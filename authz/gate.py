"""
authz/gate.py -- Authorization Gate: composable access-control strategies.

Every strategy is a decision function over (principal, current tenant state)
and returns a Decision. None of them raise for a denial. The order of checks
is the same for each:

  1. No principal                 -> 401 AUTH_REQUIRED
  2. AdminPrincipal               -> allowed (tier matrix never consulted)
  3. ClientPrincipal, no tenant   -> 403 FORBIDDEN
  4. Tier check (one fresh read)  -> allowed, or 403 AUTHZ_TIER_UPGRADE_REQUIRED

The admin/client split is decided once, in _gate_principal(), by checking
the Principal variant. Strategies never compare role strings.

Each strategy call reads the tenant's tier exactly once and answers every
feature in the request from that one value, so an all-of/any-of decision
cannot mix two tiers if an admin changes the tier mid-evaluation.

Store failures propagate as StoreUnavailableError; retrying an authorization
decision could mask a genuine denial.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.models import AdminPrincipal, ClientPrincipal, Principal
from authz.decisions import (
    AdminRequirement,
    AllFeaturesRequirement,
    AnyFeatureRequirement,
    Decision,
    FeatureRequirement,
    MinimumTierRequirement,
)
from core.errors import AUTH_REQUIRED, AUTHZ_ADMIN_ONLY, AUTHZ_TIER_UPGRADE_REQUIRED, FORBIDDEN
from core.tiers import has_feature_access, normalize_tier, tier_rank
from tenancy.evaluator import AccessEvaluator

logger = logging.getLogger("apexgate.authz")

_AUTH_REQUIRED = Decision.deny(401, AUTH_REQUIRED, "Authentication required")
_NO_CLIENT = Decision.deny(403, FORBIDDEN, "No client association found")


def _dedupe(features: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(features))


class AuthorizationGate:
    def __init__(self, evaluator: AccessEvaluator) -> None:
        self._evaluator = evaluator

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _gate_principal(self, principal: Principal | None) -> Decision | None:
        """Steps 1-3. Returns a final Decision, or None when a tier check is needed."""
        if principal is None:
            return _AUTH_REQUIRED
        if isinstance(principal, AdminPrincipal):
            return Decision.allow()
        if not isinstance(principal, ClientPrincipal) or not principal.client_id:
            return _NO_CLIENT
        return None

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def require_feature(self, principal: Principal | None, feature: str) -> Decision:
        early = self._gate_principal(principal)
        if early is not None:
            return early
        access = self._evaluator.check(principal.client_id, feature)
        if access.granted:
            return Decision.allow()
        logger.warning(
            "Tier access denied: user=%s client=%s feature=%s tier=%s",
            principal.user_id,
            principal.client_id,
            feature,
            access.tier,
        )
        return Decision.deny(
            403,
            AUTHZ_TIER_UPGRADE_REQUIRED,
            f"This feature requires a tier upgrade. Your current tier ({access.tier or 'unknown'}) "
            f"does not include access to '{feature}'.",
            feature=feature,
            current_tier=access.tier,
        )

    def require_all_features(self, principal: Principal | None, features: Iterable[str]) -> Decision:
        """Allowed only if every requested feature is in the tenant's tier.

        A tenant with no tier is denied even when the feature list is empty.
        """
        requested = _dedupe(features)
        early = self._gate_principal(principal)
        if early is not None:
            return early
        tier = self._evaluator.get_client_tier(principal.client_id)
        denied = tuple(f for f in requested if not has_feature_access(tier, f))
        if tier is not None and not denied:
            return Decision.allow()
        logger.warning(
            "Tier access denied: user=%s client=%s features=%s tier=%s",
            principal.user_id,
            principal.client_id,
            ", ".join(denied),
            tier,
        )
        if tier is None:
            message = "No subscription tier found for your account."
        else:
            message = (
                f"Your current tier ({tier}) does not include access to all required features: "
                f"{', '.join(denied)}."
            )
        return Decision.deny(
            403,
            AUTHZ_TIER_UPGRADE_REQUIRED,
            message,
            current_tier=tier,
            denied_features=denied,
        )

    def require_any_feature(self, principal: Principal | None, features: Iterable[str]) -> Decision:
        """Allowed if at least one requested feature is in the tenant's tier.

        An empty feature list is denied, as is a tenant with no tier.
        """
        requested = _dedupe(features)
        early = self._gate_principal(principal)
        if early is not None:
            return early
        tier = self._evaluator.get_client_tier(principal.client_id)
        if any(has_feature_access(tier, f) for f in requested):
            return Decision.allow()
        logger.warning(
            "Tier access denied: user=%s client=%s features=%s tier=%s",
            principal.user_id,
            principal.client_id,
            ", ".join(requested),
            tier,
        )
        return Decision.deny(
            403,
            AUTHZ_TIER_UPGRADE_REQUIRED,
            f"Your current tier ({tier or 'unknown'}) does not include access to any of the required features: "
            f"{', '.join(requested)}.",
            current_tier=tier,
            required_features=requested,
        )

    def require_minimum_tier(self, principal: Principal | None, minimum_tier: str) -> Decision:
        """Compare tier ranks. Rank orders plans; it does not imply feature overlap."""
        required = normalize_tier(minimum_tier) or minimum_tier
        early = self._gate_principal(principal)
        if early is not None:
            return early
        tier = self._evaluator.get_client_tier(principal.client_id)
        if tier is not None and tier_rank(tier) >= tier_rank(required):
            return Decision.allow()
        logger.warning(
            "Insufficient tier level: user=%s client=%s current=%s required=%s",
            principal.user_id,
            principal.client_id,
            tier,
            required,
        )
        if tier is None:
            message = f"No subscription tier found. This feature requires {required} tier or higher."
        else:
            message = f"This feature requires {required} tier or higher. Your current tier is {tier}."
        return Decision.deny(
            403,
            AUTHZ_TIER_UPGRADE_REQUIRED,
            message,
            current_tier=tier,
            required_tier=required,
        )

    def require_admin(self, principal: Principal | None) -> Decision:
        if principal is None:
            return _AUTH_REQUIRED
        if isinstance(principal, AdminPrincipal):
            return Decision.allow()
        logger.warning("Admin-only access denied: user=%s", principal.user_id)
        return Decision.deny(403, AUTHZ_ADMIN_ONLY, "This endpoint requires admin privileges")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def evaluate(self, principal: Principal | None, requirement) -> Decision:
        """Evaluate any requirement object from authz/decisions.py."""
        if isinstance(requirement, FeatureRequirement):
            return self.require_feature(principal, requirement.feature)
        if isinstance(requirement, AllFeaturesRequirement):
            return self.require_all_features(principal, requirement.features)
        if isinstance(requirement, AnyFeatureRequirement):
            return self.require_any_feature(principal, requirement.features)
        if isinstance(requirement, MinimumTierRequirement):
            return self.require_minimum_tier(principal, requirement.minimum_tier)
        if isinstance(requirement, AdminRequirement):
            return self.require_admin(principal)
        raise TypeError(f"Unsupported requirement type: {type(requirement).__name__}")

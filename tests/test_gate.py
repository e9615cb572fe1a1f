"""Unit tests for authz/gate.py -- the authorization gate strategies.

Covers:
- Single feature: allowed, upgrade-required payload, tier change visible next call
- All-of / any-of feature requirements and their denial payloads
- Minimum tier by rank, including tenants with no tier
- Admin bypass for every strategy; admin-only requirement
- No principal -> 401 AUTH_REQUIRED; client with no tenant -> 403 FORBIDDEN
- evaluate() dispatch over requirement objects
"""

from __future__ import annotations

import pytest

from auth.models import AdminPrincipal, ClientPrincipal
from authz.decisions import (
    AdminRequirement,
    AllFeaturesRequirement,
    AnyFeatureRequirement,
    Decision,
    FeatureRequirement,
    MinimumTierRequirement,
)
from authz.gate import AuthorizationGate
from core.errors import AUTH_REQUIRED, AUTHZ_ADMIN_ONLY, AUTHZ_TIER_UPGRADE_REQUIRED, FORBIDDEN
from tenancy.models import Client

ADMIN = AdminPrincipal(user_id=1, email="ops@apexgate.test")
ORPHAN = ClientPrincipal(user_id=9, email="orphan@acme.test", client_id=None)


@pytest.fixture
def gate(evaluator) -> AuthorizationGate:
    return AuthorizationGate(evaluator)


@pytest.fixture
def tenant(tenant_store):
    """Factory: create a tenant on a tier and return (client_id, principal)."""

    def _make(tier: str) -> tuple[str, ClientPrincipal]:
        cid = tenant_store.create_client(Client(company_name=f"{tier} co", tier=tier))
        return cid, ClientPrincipal(user_id=2, email="owner@acme.test", client_id=cid)

    return _make


ALL_REQUIREMENTS = [
    FeatureRequirement("dot_audits"),
    AllFeaturesRequirement(("dot_audits", "revenue_reports")),
    AnyFeatureRequirement(("dot_audits",)),
    MinimumTierRequirement("back_office_command"),
    AdminRequirement(),
]


# ---------------------------------------------------------------------------
# Single feature
# ---------------------------------------------------------------------------


class TestRequireFeature:
    def test_feature_in_tier(self, gate, tenant) -> None:
        _, principal = tenant("guardian")
        decision = gate.require_feature(principal, "ifta_reports")
        assert decision == Decision.allow()

    def test_feature_outside_tier(self, gate, tenant) -> None:
        _, principal = tenant("wingman")
        decision = gate.require_feature(principal, "ifta_reports")
        assert decision.allowed is False
        assert decision.status == 403
        assert decision.code == AUTHZ_TIER_UPGRADE_REQUIRED
        assert decision.feature == "ifta_reports"
        assert decision.current_tier == "wingman"
        assert "wingman" in decision.message
        assert "ifta_reports" in decision.message

    def test_upgrade_takes_effect_on_next_call(self, gate, tenant, tenant_store) -> None:
        cid, principal = tenant("wingman")
        assert gate.require_feature(principal, "ifta_reports").allowed is False
        tenant_store.update_tier(cid, "guardian")
        assert gate.require_feature(principal, "ifta_reports").allowed is True

    def test_denial_detail_envelope(self, gate, tenant) -> None:
        _, principal = tenant("wingman")
        detail = gate.require_feature(principal, "csa_scores").to_detail()
        assert detail["code"] == AUTHZ_TIER_UPGRADE_REQUIRED
        assert detail["feature"] == "csa_scores"
        assert detail["current_tier"] == "wingman"
        assert "denied_features" not in detail

    def test_deactivated_tenant_reports_no_tier(self, gate, tenant, tenant_store) -> None:
        cid, principal = tenant("apex_command")
        tenant_store.set_active(cid, False)
        decision = gate.require_feature(principal, "support_tickets")
        assert decision.code == AUTHZ_TIER_UPGRADE_REQUIRED
        assert decision.current_tier is None
        assert decision.to_detail()["current_tier"] is None


# ---------------------------------------------------------------------------
# Multiple features
# ---------------------------------------------------------------------------


class TestRequireAllFeatures:
    def test_all_present(self, gate, tenant) -> None:
        _, principal = tenant("apex_command")
        assert gate.require_all_features(principal, ["csa_scores", "eld_reports"]).allowed is True

    def test_reports_only_missing_features(self, gate, tenant) -> None:
        _, principal = tenant("guardian")
        decision = gate.require_all_features(principal, ["eld_reports", "csa_scores", "dataq_disputes"])
        assert decision.allowed is False
        assert decision.code == AUTHZ_TIER_UPGRADE_REQUIRED
        assert decision.denied_features == ("csa_scores", "dataq_disputes")
        assert decision.current_tier == "guardian"

    def test_duplicates_are_collapsed(self, gate, tenant) -> None:
        _, principal = tenant("wingman")
        decision = gate.require_all_features(principal, ["csa_scores", "csa_scores"])
        assert decision.denied_features == ("csa_scores",)

    def test_empty_list_still_needs_a_tier(self, gate, tenant, tenant_store) -> None:
        cid, principal = tenant("wingman")
        assert gate.require_all_features(principal, []).allowed is True

        tenant_store.set_active(cid, False)
        decision = gate.require_all_features(principal, [])
        assert decision.allowed is False
        assert decision.code == AUTHZ_TIER_UPGRADE_REQUIRED
        assert decision.current_tier is None
        assert gate.require_feature(principal, "support_tickets").allowed is False


class TestRequireAnyFeature:
    def test_one_match_is_enough(self, gate, tenant) -> None:
        _, principal = tenant("dot_readiness_audit")
        assert gate.require_any_feature(principal, ["revenue_reports", "dot_audits"]).allowed is True

    def test_no_match(self, gate, tenant) -> None:
        _, principal = tenant("wingman")
        decision = gate.require_any_feature(principal, ["revenue_reports", "dot_audits"])
        assert decision.allowed is False
        assert decision.required_features == ("revenue_reports", "dot_audits")
        assert decision.to_detail()["required_features"] == ["revenue_reports", "dot_audits"]

    def test_empty_list_is_denied(self, gate, tenant, tenant_store) -> None:
        cid, principal = tenant("back_office_command")
        assert gate.require_any_feature(principal, []).allowed is False
        tenant_store.set_active(cid, False)
        assert gate.require_any_feature(principal, []).allowed is False


# ---------------------------------------------------------------------------
# Minimum tier
# ---------------------------------------------------------------------------


class TestRequireMinimumTier:
    @pytest.mark.parametrize(
        "tier,minimum,allowed",
        [
            ("guardian", "guardian", True),
            ("apex_command", "guardian", True),
            ("wingman", "guardian", False),
            ("dot_readiness_audit", "guardian", True),
            ("virtual_dispatcher", "apex_command", True),
            ("apex_command", "back_office_command", False),
            ("back_office_command", "wingman", True),
        ],
    )
    def test_rank_comparison(self, gate, tenant, tier, minimum, allowed) -> None:
        _, principal = tenant(tier)
        assert gate.require_minimum_tier(principal, minimum).allowed is allowed

    def test_denial_payload(self, gate, tenant) -> None:
        _, principal = tenant("wingman")
        decision = gate.require_minimum_tier(principal, "apex_command")
        assert decision.code == AUTHZ_TIER_UPGRADE_REQUIRED
        assert decision.current_tier == "wingman"
        assert decision.required_tier == "apex_command"

    def test_no_tier_is_denied(self, gate) -> None:
        principal = ClientPrincipal(user_id=2, email="owner@acme.test", client_id="missing")
        decision = gate.require_minimum_tier(principal, "wingman")
        assert decision.allowed is False
        assert decision.current_tier is None
        assert "No subscription tier" in decision.message


# ---------------------------------------------------------------------------
# Principal handling shared by every strategy
# ---------------------------------------------------------------------------


class TestPrincipalHandling:
    @pytest.mark.parametrize("requirement", ALL_REQUIREMENTS)
    def test_admin_bypasses_everything(self, gate, requirement) -> None:
        assert gate.evaluate(ADMIN, requirement).allowed is True

    @pytest.mark.parametrize("requirement", ALL_REQUIREMENTS)
    def test_no_principal_is_401(self, gate, requirement) -> None:
        decision = gate.evaluate(None, requirement)
        assert decision.status == 401
        assert decision.code == AUTH_REQUIRED

    @pytest.mark.parametrize("requirement", ALL_REQUIREMENTS[:4])
    def test_client_without_tenant_is_forbidden(self, gate, requirement) -> None:
        decision = gate.evaluate(ORPHAN, requirement)
        assert decision.status == 403
        assert decision.code == FORBIDDEN
        assert decision.message == "No client association found"

    def test_admin_only_rejects_clients(self, gate, tenant) -> None:
        _, principal = tenant("back_office_command")
        decision = gate.require_admin(principal)
        assert decision.status == 403
        assert decision.code == AUTHZ_ADMIN_ONLY

    def test_admin_bypass_does_not_read_tenant_store(self) -> None:
        class ExplodingEvaluator:
            def check(self, *args):
                raise AssertionError("tier matrix consulted for an admin")

            def get_client_tier(self, *args):
                raise AssertionError("tier matrix consulted for an admin")

        gate = AuthorizationGate(ExplodingEvaluator())
        for requirement in ALL_REQUIREMENTS:
            assert gate.evaluate(ADMIN, requirement).allowed is True

    def test_unknown_requirement_type(self, gate) -> None:
        with pytest.raises(TypeError):
            gate.evaluate(ADMIN, object())

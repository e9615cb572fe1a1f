"""
core/tiers.py -- Tier Access Matrix: subscription tier -> feature set.

Pure, table-driven lookups. No I/O, no clock, no module state beyond the
constant tables below, so every (tier, feature) pair is a deterministic fact
that can be asserted directly in tests.

Adding a tier is a data change: add a row to TIER_FEATURES and a rank to
TIER_RANK. A row whose feature set contains WILDCARD grants every feature
in ALL_FEATURES (back_office_command is the full-access plan).

TIER_RANK is used only by the minimum-tier guard for ordering. It says
nothing about feature membership: dot_readiness_audit shares rank 2 with
guardian even though their feature sets do not overlap.

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations

WILDCARD = "*"

# Every capability the portal can gate, in display order.
ALL_FEATURES: tuple[str, ...] = (
    "support_tickets",
    "eld_reports",
    "dispatch_board",
    "ifta_reports",
    "driver_files",
    "csa_scores",
    "dataq_disputes",
    "load_schedules",
    "broker_packets",
    "revenue_reports",
    "dot_audits",
)

_WINGMAN = frozenset({"support_tickets", "eld_reports", "dispatch_board"})
_GUARDIAN = _WINGMAN | {"ifta_reports", "driver_files"}
_APEX_COMMAND = _GUARDIAN | {"csa_scores", "dataq_disputes"}

TIER_FEATURES: dict[str, frozenset[str]] = {
    "wingman": _WINGMAN,
    "guardian": _GUARDIAN,
    "apex_command": _APEX_COMMAND,
    "virtual_dispatcher": frozenset(
        {
            "support_tickets",
            "eld_reports",
            "ifta_reports",
            "driver_files",
            "dispatch_board",
            "load_schedules",
            "broker_packets",
            "revenue_reports",
        }
    ),
    "dot_readiness_audit": frozenset({"dot_audits"}),
    "back_office_command": frozenset({WILDCARD}),
}

TIER_RANK: dict[str, int] = {
    "wingman": 1,
    "guardian": 2,
    "dot_readiness_audit": 2,
    "apex_command": 3,
    "virtual_dispatcher": 3,
    "back_office_command": 4,
}

_FEATURE_SET = frozenset(ALL_FEATURES)


def normalize_tier(tier: str | None) -> str | None:
    """Return the lookup key for a tier name, or None for empty input."""
    if not tier or not isinstance(tier, str):
        return None
    return tier.strip().lower() or None


def is_known_tier(tier: str | None) -> bool:
    key = normalize_tier(tier)
    return key is not None and key in TIER_FEATURES


def is_known_feature(feature: str | None) -> bool:
    return isinstance(feature, str) and feature in _FEATURE_SET


def has_feature_access(tier: str | None, feature: str | None) -> bool:
    """Return True if the tier's plan includes the feature.

    False for an empty or unrecognised tier and for an empty or unrecognised
    feature. A wildcard tier is True for every defined feature.
    """
    key = normalize_tier(tier)
    if key is None or not is_known_feature(feature):
        return False
    features = TIER_FEATURES.get(key)
    if features is None:
        return False
    if WILDCARD in features:
        return True
    return feature in features


def get_available_features(tier: str | None) -> frozenset[str]:
    """Return the feature set for a tier.

    The full feature universe for a wildcard tier, the empty set for an
    unrecognised tier. Never raises.
    """
    key = normalize_tier(tier)
    if key is None:
        return frozenset()
    features = TIER_FEATURES.get(key)
    if features is None:
        return frozenset()
    if WILDCARD in features:
        return _FEATURE_SET
    return features


def tier_rank(tier: str | None) -> int:
    """Return the ordering rank of a tier; 0 for unknown tiers."""
    key = normalize_tier(tier)
    if key is None:
        return 0
    return TIER_RANK.get(key, 0)


def sorted_features(features) -> list[str]:
    """Order a feature collection by ALL_FEATURES display order."""
    wanted = set(features)
    return [f for f in ALL_FEATURES if f in wanted]

"""
authz/decisions.py -- Decision objects and the requirements they answer.

A Decision is the whole output of the authorization gate. It carries enough
context for the caller to render a response (status, code, message) and for
a UI to build an upgrade prompt (feature, current_tier, required_tier, ...).
Transport adapters map it to their own protocol; nothing in here knows about
HTTP beyond the numeric status.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import AUTHZ_TIER_UPGRADE_REQUIRED

# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status: int
    code: str | None = None
    message: str | None = None
    feature: str | None = None
    current_tier: str | None = None
    required_tier: str | None = None
    denied_features: tuple[str, ...] | None = None
    required_features: tuple[str, ...] | None = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True, status=200)

    @classmethod
    def deny(cls, status: int, code: str, message: str, **payload) -> "Decision":
        return cls(allowed=False, status=status, code=code, message=message, **payload)

    def to_detail(self) -> dict:
        """Error-envelope body for a denial: code, message, and any payload fields set."""
        detail: dict = {"code": self.code, "message": self.message}
        if self.feature is not None:
            detail["feature"] = self.feature
        if self.code == AUTHZ_TIER_UPGRADE_REQUIRED:
            # None is meaningful here: the tenant has no tier yet
            detail["current_tier"] = self.current_tier
        if self.required_tier is not None:
            detail["required_tier"] = self.required_tier
        if self.denied_features is not None:
            detail["denied_features"] = list(self.denied_features)
        if self.required_features is not None:
            detail["required_features"] = list(self.required_features)
        return detail


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureRequirement:
    feature: str


@dataclass(frozen=True)
class AllFeaturesRequirement:
    features: tuple[str, ...]


@dataclass(frozen=True)
class AnyFeatureRequirement:
    features: tuple[str, ...]


@dataclass(frozen=True)
class MinimumTierRequirement:
    minimum_tier: str


@dataclass(frozen=True)
class AdminRequirement:
    pass

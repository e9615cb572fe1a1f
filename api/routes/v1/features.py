"""
api/routes/v1/features.py -- Feature discovery and per-feature gate checks.

Routes:
  GET /api/v1/features             -- features available to the caller's tenant
  GET /api/v1/features/{feature}   -- gate decision for one feature (403 with upgrade payload on denial)

Admins see every feature. The tenant's tier is read fresh on every request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import FeatureAccessResponse, FeaturesResponse
from auth.dependencies import get_principal
from auth.models import AdminPrincipal, Principal
from authz.gate import AuthorizationGate
from core.errors import NOT_FOUND
from core.tiers import ALL_FEATURES, get_available_features, is_known_feature, sorted_features

router = APIRouter()


@router.get("/features", response_model=FeaturesResponse)
def list_features(request: Request, principal: Principal = Depends(get_principal)) -> FeaturesResponse:
    if isinstance(principal, AdminPrincipal):
        return FeaturesResponse(tier=None, features=list(ALL_FEATURES))
    tier = request.app.state.evaluator.get_client_tier(principal.client_id)
    return FeaturesResponse(tier=tier, features=sorted_features(get_available_features(tier)))


@router.get("/features/{feature}", response_model=FeatureAccessResponse)
def check_feature(
    request: Request,
    feature: str,
    principal: Principal = Depends(get_principal),
) -> FeatureAccessResponse:
    if not is_known_feature(feature):
        raise HTTPException(
            status_code=404,
            detail={"code": NOT_FOUND, "message": f"Unknown feature: {feature}"},
        )
    gate: AuthorizationGate = request.app.state.gate
    decision = gate.require_feature(principal, feature)
    if not decision.allowed:
        raise HTTPException(status_code=decision.status, detail=decision.to_detail())
    return FeatureAccessResponse(feature=feature)

"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login    -- password login; returns a token pair and sets the session cookie
  POST /api/v1/auth/refresh  -- exchange a refresh token for a new pair (old one is revoked)
  POST /api/v1/auth/logout   -- revoke the current tokens and clear the cookie
  GET  /api/v1/auth/me       -- current principal, tier and available features

Security:
  POST /login is rate-limited (Settings.login_rate_limit) per IP.
  AuthService.login() runs bcrypt on every attempt and returns the single
  message "Invalid credentials" for every failure.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LogoutRequest, MeResponse, RefreshRequest, TokenResponse
from auth.dependencies import get_principal, request_context
from auth.models import AdminPrincipal, Principal, TokenPair
from auth.service import AuthService
from auth.session import SessionValidator
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings
from core.tiers import ALL_FEATURES, get_available_features, sorted_features

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   public -- revoking a token needs no prior auth
# - GET  /api/v1/auth/me:       requires auth (get_principal)
router = APIRouter()


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        ).model_dump(),
    )
    set_auth_cookie(resp, pair.access_token, pair.expires_in)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Failures raise AuthenticationError, rendered by the ApexGateError handler
    as 401 AUTH_INVALID_CREDENTIALS.
    """
    auth_service: AuthService = request.app.state.auth_service
    _, pair = auth_service.login(body.email, body.password)
    return _token_response(pair)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate a refresh token. A reused or expired token yields 401 AUTH_SESSION_EXPIRED."""
    validator: SessionValidator = request.app.state.session_validator
    pair = validator.refresh(body.refresh_token)
    return _token_response(pair)


@router.post("/auth/logout")
def logout(request: Request, body: LogoutRequest | None = None) -> JSONResponse:
    """Revoke the presented access token (and refresh token, if given) and clear the cookie."""
    validator: SessionValidator = request.app.state.session_validator
    auth_service: AuthService = request.app.state.auth_service
    access_token = validator.extract_credential(request_context(request))
    auth_service.logout(access_token, body.refresh_token if body else None)
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_principal)) -> MeResponse:
    """Return identity information and the feature set for the current principal."""
    if isinstance(principal, AdminPrincipal):
        features = ALL_FEATURES
        tier = None
    else:
        tier = request.app.state.evaluator.get_client_tier(principal.client_id)
        features = get_available_features(tier)
    return MeResponse(
        user_id=principal.user_id,
        email=principal.email,
        role=principal.role,
        client_id=principal.client_id,
        tier=tier,
        features=sorted_features(features),
    )

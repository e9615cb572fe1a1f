"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and gating.

Credentials are read by SessionValidator in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. Session cookie (Settings.session_cookie_name) -- set by POST /auth/login.

try_get_principal() is the soft variant (returns None when unauthenticated).
get_principal() wraps the validator and raises HTTP 401 with the validator's
code (AUTH_TOKEN_MISSING / AUTH_TOKEN_INVALID).
require(requirement) evaluates any requirement from authz/decisions.py
through the AuthorizationGate on app.state and raises HTTPException with the
Decision's status and payload on denial.

Layer rule: no imports from web/, tenancy/, or audit/. The gate is reached
through request.app.state, so this module never imports authz/ either.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import AdminPrincipal, Principal
from auth.session import RequestContext, SessionValidator
from core.errors import AuthenticationError


def request_context(request: Request) -> RequestContext:
    """Build the transport-agnostic view of a Starlette request."""
    return RequestContext(
        headers=dict(request.headers),
        cookies=dict(request.cookies),
        client_host=request.client.host if request.client else None,
    )


def try_get_principal(request: Request) -> Principal | None:
    """Return the authenticated principal, or None.

    Store failures still propagate and become a 500 via the ApexGateError handler.
    """
    validator: SessionValidator = request.app.state.session_validator
    return validator.try_authenticate(request_context(request))


def get_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    validator: SessionValidator = request.app.state.session_validator
    try:
        return validator.authenticate(request_context(request))
    except AuthenticationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from None


def require(requirement) -> Callable[[Request], Principal]:
    """Dependency factory: authenticate, then evaluate requirement through the gate.

    A missing or unresolvable credential is reported by the validator (401
    AUTH_TOKEN_MISSING / AUTH_TOKEN_INVALID) before the gate runs.

        @router.get("/ifta", dependencies=[Depends(require(FeatureRequirement("ifta_reports")))])
    """

    def dependency(request: Request) -> Principal:
        principal = get_principal(request)
        decision = request.app.state.gate.evaluate(principal, requirement)
        if not decision.allowed:
            raise HTTPException(status_code=decision.status, detail=decision.to_detail())
        return principal

    return dependency


def admin_id_of(principal: Principal) -> int:
    """Acting admin's id for audit entries. Only valid behind an admin requirement."""
    if not isinstance(principal, AdminPrincipal):
        raise TypeError("admin_id_of() called with a non-admin principal")
    return principal.user_id


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None

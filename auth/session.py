"""
auth/session.py -- Session Validator: raw credential -> Principal or typed failure.

Every protected operation starts here. The validator is transport-agnostic:
it reads credentials from a RequestContext (headers + cookies) that any
adapter can build, and it reports failures as AuthenticationError with a
stable code and status 401.

Failure wording is generic. "Token malformed", "user not found",
"token revoked" and "user deactivated" all surface as AUTH_TOKEN_INVALID with
the same message so a caller cannot probe which case applied.

Ambient session state:
  UI-adjacent code (templates, background helpers running inside a request)
  sometimes needs "who is logged in" without threading the credential through
  every call. bind_session() binds a credential to the current context via
  contextvars; is_authenticated() and current_principal() read it and never
  raise. Each request binds its own value, so concurrent requests never see
  each other's session.

Layer rule: no imports from api/, authz/, tenancy/, or audit/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field

from auth.models import ROLE_ADMIN, AdminPrincipal, ClientPrincipal, Principal, ResolvedIdentity, TokenPair
from auth.resolver import CredentialResolver
from core.config import get_settings
from core.errors import (
    AUTH_SESSION_EXPIRED,
    AUTH_TOKEN_INVALID,
    AUTH_TOKEN_MISSING,
    INVALID_TOKEN_MESSAGE,
    ApexGateError,
    AuthenticationError,
)

logger = logging.getLogger("apexgate.auth")

_BEARER_PREFIX = "bearer "

_ambient_credential: ContextVar[str | None] = ContextVar("apexgate_session_credential", default=None)


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the validator looks at.

    Header names are matched case-insensitively; cookie names exactly.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    client_host: str | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


def principal_from_identity(identity: ResolvedIdentity) -> Principal:
    """Build the Principal variant for a resolved identity.

    Anything other than an explicit admin role claim is a client.
    """
    if identity.role_claim == ROLE_ADMIN:
        return AdminPrincipal(user_id=identity.id, email=identity.email)
    return ClientPrincipal(user_id=identity.id, email=identity.email, client_id=identity.tenant_claim or None)


class SessionValidator:
    """Turns credentials into principals using an injected CredentialResolver."""

    def __init__(self, resolver: CredentialResolver, cookie_name: str | None = None) -> None:
        self._resolver = resolver
        self._cookie_name = cookie_name or get_settings().session_cookie_name

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract_credential(self, context: RequestContext) -> str | None:
        """Return the credential carried by the request, or None.

        Precedence: Authorization: Bearer <token> header, then the session
        cookie. A present-but-empty value counts as absent.
        """
        auth_header = context.header("Authorization") or ""
        if auth_header[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
            token = auth_header[len(_BEARER_PREFIX) :].strip()
            if token:
                return token
        cookie = context.cookies.get(self._cookie_name)
        if cookie:
            return cookie
        return None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, credential: str | None) -> Principal:
        """Resolve a credential to a Principal.

        Raises:
            AuthenticationError(AUTH_TOKEN_MISSING): no credential supplied.
            AuthenticationError(AUTH_TOKEN_INVALID): the credential does not
                resolve to an active principal, for any reason.
            StoreUnavailableError: the credential store failed.
        """
        if not credential:
            raise AuthenticationError(AUTH_TOKEN_MISSING, "Authentication required")
        identity = self._resolver.resolve(credential)
        if identity is None:
            raise AuthenticationError(AUTH_TOKEN_INVALID, INVALID_TOKEN_MESSAGE)
        return principal_from_identity(identity)

    def authenticate(self, context: RequestContext) -> Principal:
        return self.validate(self.extract_credential(context))

    def try_authenticate(self, context: RequestContext) -> Principal | None:
        """Soft variant of authenticate(): None instead of AuthenticationError.

        Store failures still propagate.
        """
        try:
            return self.authenticate(context)
        except AuthenticationError:
            return None

    def refresh(self, refresh_token: str | None) -> TokenPair:
        """Exchange a refresh token for a new token pair. No automatic retry."""
        pair = self._resolver.refresh(refresh_token) if refresh_token else None
        if pair is None:
            raise AuthenticationError(AUTH_SESSION_EXPIRED, "Session expired")
        return pair

    # ------------------------------------------------------------------
    # Ambient session
    # ------------------------------------------------------------------

    @contextmanager
    def bind_session(self, credential: str | None) -> Iterator[None]:
        """Make credential the ambient session for the duration of the block."""
        token = _ambient_credential.set(credential)
        try:
            yield
        finally:
            _ambient_credential.reset(token)

    def current_principal(self) -> Principal | None:
        """Return the principal of the ambient session, or None. Never raises."""
        credential = _ambient_credential.get()
        if not credential:
            return None
        try:
            return self.validate(credential)
        except ApexGateError:
            return None
        except Exception:
            logger.exception("Unexpected failure reading the ambient session")
            return None

    def is_authenticated(self) -> bool:
        return self.current_principal() is not None

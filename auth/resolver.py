"""
auth/resolver.py -- Credential store adapter: token -> identity, refresh -> new pair.

CredentialResolver is the seam the session validator depends on. The shipped
JWTCredentialResolver verifies tokens issued by auth/tokens.py and consults
UserStore for revocation and the current user record. Tests and alternative
identity providers substitute their own implementation.

resolve() and refresh() return None for every "this credential is not good"
outcome. They raise StoreUnavailableError only when the user store itself
fails, so an outage is never reported as a bad token.

Layer rule: no imports from api/, authz/, tenancy/, or audit/.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from auth.models import ROLE_ADMIN, ResolvedIdentity, TokenPair, User
from auth.store import UserStore
from auth.tokens import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    token_expiry_iso,
)
from core.config import get_settings
from core.errors import StoreUnavailableError

logger = logging.getLogger("apexgate.auth")


class CredentialResolver(Protocol):
    def resolve(self, credential: str) -> ResolvedIdentity | None: ...

    def refresh(self, refresh_token: str) -> TokenPair | None: ...


def issue_token_pair(user: User) -> TokenPair:
    settings = get_settings()
    return TokenPair(
        access_token=create_access_token(user),
        refresh_token=create_refresh_token(user),
        expires_in=settings.token_expire_seconds,
    )


class JWTCredentialResolver:
    """Resolve JWT access tokens against the user store.

    A token resolves only if its signature and exp are valid, its jti has not
    been revoked, and the user it names still exists and is active.
    """

    def __init__(self, user_store: UserStore) -> None:
        self._users = user_store

    def resolve(self, credential: str) -> ResolvedIdentity | None:
        payload = decode_access_token(credential)
        if payload is None:
            return None
        try:
            if self._users.is_token_revoked(payload["jti"]):
                return None
            user = self._users.get_by_id(payload["user_id"])
        except SQLAlchemyError as exc:
            logger.exception("User store unavailable while resolving a credential")
            raise StoreUnavailableError() from exc
        if user is None or not user.is_active:
            return None
        return ResolvedIdentity(
            id=user.id,
            email=user.email,
            role_claim=user.role,
            tenant_claim=None if user.role == ROLE_ADMIN else user.client_id,
        )

    def refresh(self, refresh_token: str) -> TokenPair | None:
        """Rotate a refresh token: revoke the presented one, issue a new pair.

        Reusing a refresh token after rotation fails because its jti is
        already in the revocation table.
        """
        payload = decode_refresh_token(refresh_token)
        if payload is None:
            return None
        try:
            user = self._users.get_by_id(payload["user_id"])
            if user is None or not user.is_active:
                return None
            if not self._users.revoke_token(payload["jti"], token_expiry_iso(payload)):
                logger.warning("Refresh token reuse rejected for user %s", user.id)
                return None
        except SQLAlchemyError as exc:
            logger.exception("User store unavailable while refreshing a session")
            raise StoreUnavailableError() from exc
        return issue_token_pair(user)

    def revoke(self, token: str) -> bool:
        """Revoke an access or refresh token. Returns False if it was not a valid token."""
        payload = decode_access_token(token) or decode_refresh_token(token)
        if payload is None:
            return False
        try:
            self._users.revoke_token(payload["jti"], token_expiry_iso(payload))
        except SQLAlchemyError as exc:
            logger.exception("User store unavailable while revoking a token")
            raise StoreUnavailableError() from exc
        return True

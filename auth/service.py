"""
auth/service.py -- Login, logout, and user provisioning.

Login policy: every failed login returns the identical message
"Invalid credentials" (code AUTH_INVALID_CREDENTIALS), whether the email is
unknown, the password is wrong, or the account is deactivated. The timing
side channel is closed by authenticate_user() (bcrypt always runs).

User provisioning enforces password complexity and the role/tenant shape:
admins have no tenant; client users must name one. The tenant's existence is
checked by the caller (tenancy/service.py owns tenants) -- this module stays
below tenancy/ in the layer order.

Layer rule: no imports from api/, authz/, tenancy/, or audit/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import ROLE_ADMIN, ROLE_CLIENT, ROLES, TokenPair, User
from auth.resolver import JWTCredentialResolver, issue_token_pair
from auth.store import UserStore
from auth.tokens import authenticate_user, hash_password, password_problems
from core.errors import (
    AUTH_INVALID_CREDENTIALS,
    INVALID_CREDENTIALS_MESSAGE,
    AuthenticationError,
    InvalidInputError,
    StoreUnavailableError,
)

logger = logging.getLogger("apexgate.auth")


class AuthService:
    def __init__(self, user_store: UserStore, resolver: JWTCredentialResolver | None = None) -> None:
        self._users = user_store
        self._resolver = resolver or JWTCredentialResolver(user_store)

    def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        """Authenticate and issue a token pair.

        Raises AuthenticationError(AUTH_INVALID_CREDENTIALS, "Invalid credentials")
        on every credential failure.
        """
        try:
            user = authenticate_user(self._users, (email or "").strip(), password or "")
            if user is not None:
                self._users.update_last_login(user.id)
        except SQLAlchemyError as exc:
            logger.exception("User store unavailable during login")
            raise StoreUnavailableError() from exc
        if user is None:
            # Never log the submitted email or password.
            logger.info("Rejected login attempt")
            raise AuthenticationError(AUTH_INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)
        logger.info("User %s logged in", user.id)
        return user, issue_token_pair(user)

    def logout(self, access_token: str | None, refresh_token: str | None = None) -> None:
        """Revoke the session's tokens. Unknown or malformed tokens are ignored."""
        for token in (access_token, refresh_token):
            if token:
                self._resolver.revoke(token)

    def create_user(self, email: str, password: str, role: str = ROLE_CLIENT, client_id: str | None = None) -> User:
        """Create a login. Raises InvalidInputError on bad shape or duplicate email."""
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise InvalidInputError("A valid email address is required.")
        if role not in ROLES:
            raise InvalidInputError(f"Role must be one of: {', '.join(ROLES)}.")
        if role == ROLE_ADMIN and client_id:
            raise InvalidInputError("Admin users cannot belong to a client.")
        if role == ROLE_CLIENT and not client_id:
            raise InvalidInputError("Client users must be attached to a client.")
        problems = password_problems(password or "")
        if problems:
            raise InvalidInputError("Password must contain " + ", ".join(problems) + ".")

        user = User(email=email, role=role, client_id=client_id, hashed_password=hash_password(password))
        try:
            user.id = self._users.create_user(user)
        except IntegrityError as exc:
            raise InvalidInputError("A user with this email already exists.") from exc
        except SQLAlchemyError as exc:
            logger.exception("User store unavailable while creating a user")
            raise StoreUnavailableError() from exc
        user.hashed_password = None
        logger.info("Created %s user %s", role, user.id)
        return user

    def discard_user(self, user_id: int) -> None:
        """Remove a just-created user whose creation could not be audited.

        A failure here is logged and not raised, so the caller can re-raise
        the audit failure that triggered it.
        """
        try:
            self._users.delete_user(user_id)
        except SQLAlchemyError:
            logger.exception("Could not remove unaudited user %s", user_id)
            return
        logger.warning("Removed user %s: its creation could not be audited", user_id)

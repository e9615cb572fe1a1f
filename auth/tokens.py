"""
auth/tokens.py -- JWT and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry sub (user id), email, role,
       client_id, a unique jti, typ="access" and exp. Refresh tokens carry sub,
       jti, typ="refresh" and a longer exp. Decoding returns None on any
       failure; the session validator turns None into AUTH_TOKEN_INVALID.

       Role and tenant claims are informational only. The resolver always
       re-reads the user record, so a role change or a deactivation takes
       effect on the next request instead of at token expiry.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  SECRET_KEY: sourced from core.config.get_settings(), validated at startup.

Layer rule: no imports from api/, authz/, tenancy/, or audit/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("apexgate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes; the API layer caps password
    length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("apexgate_timing_dummy")


def password_problems(plain: str) -> list[str]:
    """Return the complexity rules the password violates (empty list = acceptable).

    Rules: minimum length from Settings.password_min_length, at least one
    uppercase letter, one lowercase letter, and one digit.
    """
    problems: list[str] = []
    if len(plain) < _settings.password_min_length:
        problems.append(f"at least {_settings.password_min_length} characters")
    if not re.search(r"[A-Z]", plain):
        problems.append("an uppercase letter")
    if not re.search(r"[a-z]", plain):
        problems.append("a lowercase letter")
    if not re.search(r"[0-9]", plain):
        problems.append("a digit")
    return problems


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, duration: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Encode a signed access token for user.

    expire_seconds: session duration; 0 (default) uses
    Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    return _encode(
        {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "client_id": user.client_id,
            "typ": ACCESS_TOKEN_TYPE,
        },
        duration,
    )


def create_refresh_token(user: User, expire_seconds: int = 0) -> str:
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    return _encode({"sub": str(user.id), "typ": REFRESH_TOKEN_TYPE}, duration)


def _decode(token: str, expected_type: str) -> dict | None:
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != expected_type:
        return None
    if "sub" not in payload or "jti" not in payload:
        return None
    try:
        payload["user_id"] = int(payload["sub"])
    except (TypeError, ValueError):
        return None
    return payload


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access token. Returns the payload dict or None on any failure.

    A refresh token presented as an access token is rejected (typ mismatch).
    """
    return _decode(token, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> dict | None:
    return _decode(token, REFRESH_TOKEN_TYPE)


def token_expiry_iso(payload: dict) -> str | None:
    """Return the exp claim of a decoded payload as an ISO 8601 string."""
    exp = payload.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure. Callers must not tell
    the two failure cases apart in anything they return.
    """
    user = store.get_by_email(email) if email else None
    if user is None or user.hashed_password is None:
        verify_password(password or "", _DUMMY_HASH)
        return None
    if not verify_password(password or "", user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name)

"""
auth/store.py -- SQLAlchemy Core persistence layer for the credential store.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services and dependencies never touch SQL directly.

Tables:
  users           -- login identity, role, tenant link, bcrypt hash
  revoked_tokens  -- jti of every logged-out access token and every rotated
                     refresh token. A token whose jti appears here no longer
                     resolves to a principal, even before its exp claim.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, authz/, tenancy/, or audit/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, text
from sqlalchemy.engine import Engine

from auth.models import User
from core.config import get_settings
from core.db import make_engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="client"),
    Column("client_id", String(64)),  # NULL for admins and unattached clients
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_revoked_tokens = Table(
    "revoked_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("revoked_at", String(32), nullable=False),
    Column("expires_at", String(32)),  # lets purge_revoked() drop rows once the token is dead anyway
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and token revocations.

    Usage:
        store = UserStore()
        store.create_user(User(email="ops@example.com", role="admin", hashed_password=hash_password("S3cretpass")))
        user = store.get_by_email("ops@example.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().auth_db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Emails are stored lower-cased. Raises sqlalchemy.exc.IntegrityError if
        the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=_normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    role=user.role,
                    client_id=user.client_id,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, client_id, hashed_password.
        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Token revocation
    # ------------------------------------------------------------------

    def revoke_token(self, jti: str, expires_at: str | None = None) -> bool:
        """Record a jti as revoked. Returns False if it was already revoked.

        The insert is the single point of truth for refresh-token rotation:
        two concurrent refreshes with the same token race on the primary key
        and only one of them sees True.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                text("INSERT OR IGNORE INTO revoked_tokens (jti, revoked_at, expires_at) VALUES (:jti, :now, :exp)"),
                {"jti": jti, "now": _now_iso(), "exp": expires_at},
            )
            conn.commit()
        return result.rowcount > 0

    def is_token_revoked(self, jti: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(_revoked_tokens.select().where(_revoked_tokens.c.jti == jti)).fetchone()
        return row is not None

    def purge_revoked(self) -> int:
        """Delete revocation rows for tokens that have expired anyway. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _revoked_tokens.delete().where(
                    _revoked_tokens.c.expires_at.is_not(None) & (_revoked_tokens.c.expires_at < _now_iso())
                )
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        client_id=row.client_id,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )

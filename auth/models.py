"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes own the shape.

Principal is a closed variant: AdminPrincipal | ClientPrincipal. Call sites
that need role-specific behaviour check the variant once (in the gate) rather
than comparing role strings in many places.

Layer rule: no imports from api/, authz/, tenancy/, or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

ROLE_ADMIN = "admin"
ROLE_CLIENT = "client"
ROLES = (ROLE_ADMIN, ROLE_CLIENT)


@dataclass
class User:
    """A credential-store record.

    email is the login identifier. client_id links a client user to exactly
    one tenant; it is None for admins and for client users that have not been
    attached to a tenant yet.
    """

    email: str
    role: str = ROLE_CLIENT  # "admin" | "client"
    id: int | None = None
    hashed_password: str | None = None
    client_id: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class AdminPrincipal:
    """Authenticated administrator. Bypasses tier checks."""

    user_id: int
    email: str

    @property
    def role(self) -> str:
        return ROLE_ADMIN

    @property
    def client_id(self) -> None:
        return None


@dataclass(frozen=True)
class ClientPrincipal:
    """Authenticated tenant user. client_id is None when no tenant is attached."""

    user_id: int
    email: str
    client_id: str | None = None

    @property
    def role(self) -> str:
        return ROLE_CLIENT


Principal = Union[AdminPrincipal, ClientPrincipal]


@dataclass(frozen=True)
class ResolvedIdentity:
    """What the credential store knows about the holder of a valid credential."""

    id: int
    email: str
    role_claim: str | None
    tenant_claim: str | None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password

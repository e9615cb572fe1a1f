"""
API request and response models for ApexGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, tenancy/ and
audit/, which own the internal domain representation. Route handlers map
between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from audit.models import AuditLogEntry, AuditStatistics
from auth.models import User
from tenancy.models import Client

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    client = "client"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    Authorization denials add payload fields (feature, current_tier, ...)
    next to code and message; extra="allow" keeps them in the envelope.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/login and /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: str
    client_id: Optional[str] = None
    tier: Optional[str] = None
    features: list[str] = Field(default_factory=list)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users. client_id is required for client users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=256)
    role: RoleEnum = RoleEnum.client
    client_id: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: str
    client_id: Optional[str]
    is_active: bool
    created_at: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            client_id=user.client_id,
            is_active=user.is_active,
            created_at=user.created_at,
        )


# ---------------------------------------------------------------------------
# Features
# ---------------------------------------------------------------------------


class FeaturesResponse(BaseModel):
    """Response for GET /api/v1/features."""

    model_config = ConfigDict(frozen=True)

    tier: Optional[str]
    features: list[str]


class FeatureAccessResponse(BaseModel):
    """Response for GET /api/v1/features/{feature} when access is granted."""

    model_config = ConfigDict(frozen=True)

    feature: str
    allowed: bool = True


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ClientCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    company_name: str = Field(min_length=1, max_length=255)
    tier: str = Field(min_length=1, max_length=50)
    contact_email: Optional[str] = Field(default=None, max_length=255)


class TierUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    tier: str = Field(min_length=1, max_length=50)


class ClientResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    company_name: str
    contact_email: Optional[str]
    tier: str
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_client(cls, client: Client) -> "ClientResponse":
        return cls(
            id=client.id,
            company_name=client.company_name,
            contact_email=client.contact_email,
            tier=client.tier,
            is_active=client.is_active,
            created_at=client.created_at,
            updated_at=client.updated_at,
        )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    admin_id: str
    action_type: str
    target_table: str
    target_id: Optional[str]
    changes: dict[str, Any]
    ip_address: Optional[str]
    timestamp: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogResponse":
        return cls(
            id=entry.id,
            admin_id=entry.admin_id,
            action_type=entry.action_type,
            target_table=entry.target_table,
            target_id=entry.target_id,
            changes=entry.changes,
            ip_address=entry.ip_address,
            timestamp=entry.timestamp,
        )


class AuditStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    by_action_type: dict[str, int]
    by_admin: dict[str, int]
    unique_admins: int

    @classmethod
    def from_stats(cls, stats: AuditStatistics) -> "AuditStatsResponse":
        return cls(
            total=stats.total,
            by_action_type=stats.by_action_type,
            by_admin=stats.by_admin,
            unique_admins=stats.unique_admins,
        )

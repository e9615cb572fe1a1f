"""
core/errors.py -- Error taxonomy shared by every ApexGate layer.

Each failure kind is a stable string code plus an HTTP-equivalent status.
The transport adapter renders all of them through the same envelope:

    {"error": {"code": "...", "message": "..."}}

Propagation policy:
  - Authentication failures from the session validator and malformed audit
    writes are raised as ApexGateError subclasses so the caller cannot
    accidentally continue with a missing principal or an unrecorded action.
  - Authorization outcomes are NOT exceptions. The gate returns Decision
    objects (authz/decisions.py) that the call site renders uniformly.
  - Store failures are wrapped in StoreUnavailableError. The message is
    always generic; the underlying exception is logged server-side only.

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------

AUTH_TOKEN_MISSING = "AUTH_TOKEN_MISSING"
AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
AUTH_SESSION_EXPIRED = "AUTH_SESSION_EXPIRED"
AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
AUTH_REQUIRED = "AUTH_REQUIRED"
FORBIDDEN = "FORBIDDEN"
AUTHZ_TIER_UPGRADE_REQUIRED = "AUTHZ_TIER_UPGRADE_REQUIRED"
AUTHZ_ADMIN_ONLY = "AUTHZ_ADMIN_ONLY"
VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
SERVER_ERROR = "SERVER_ERROR"

# Login failures share one message regardless of which credential was wrong.
INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
INVALID_TOKEN_MESSAGE = "Invalid or expired token"
SERVER_ERROR_MESSAGE = "An unexpected error occurred."


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ApexGateError(Exception):
    """Base class for typed failures that carry a code and a status."""

    status_code: int = 500

    def __init__(self, code: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class AuthenticationError(ApexGateError):
    """Credential missing, unresolvable, expired, or rejected at login. Always 401."""

    status_code = 401


class InvalidInputError(ApexGateError):
    """Malformed input to a write operation. Always 400."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(VALIDATION_ERROR, message)


class NotFoundError(ApexGateError):
    status_code = 404

    def __init__(self, message: str) -> None:
        super().__init__(NOT_FOUND, message)


class StoreUnavailableError(ApexGateError):
    """An underlying store failed. The caller only ever sees a generic message."""

    status_code = 500

    def __init__(self, message: str = SERVER_ERROR_MESSAGE) -> None:
        super().__init__(SERVER_ERROR, message)

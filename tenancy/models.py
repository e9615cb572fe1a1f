"""
tenancy/models.py -- Domain dataclasses for tenants (clients).

Pure data containers. The tier string is validated against core/tiers.py by
tenancy/service.py before it is ever written.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Client:
    """A tenant: one trucking company with one subscription tier.

    id is a string (uuid4 hex) assigned by the store on insert. is_active=False
    tenants keep their tier for reactivation but resolve to no tier at all for
    access evaluation.
    """

    company_name: str
    tier: str
    id: str | None = None
    contact_email: str | None = None
    is_active: bool = True
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

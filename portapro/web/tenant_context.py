"""Tenant context for multi-tenant request scoping."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from portapro.models.database import Organization
    from portapro.tenancy.context import TenantContextProvider


@dataclass(frozen=True, slots=True)
class TenantContext:
    """Immutable tenant context handed to protected routes."""

    user_id: str  # Clerk user ID
    session_id: str
    email: str
    organization: Organization | None
    active_org_id: str | None
    provider: TenantContextProvider = field(compare=False, repr=False)

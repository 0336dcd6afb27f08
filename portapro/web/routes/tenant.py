"""Tenant context and session lifecycle API routes."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from portapro.identity.clerk import ClerkClaims
from portapro.tenancy.context import SessionRegistry
from portapro.tenancy.guard import TenantGuard
from portapro.web.dependencies import (
    get_session_registry,
    get_tenant_guard,
    require_claims,
    require_tenant,
)
from portapro.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["tenant"])


@router.get("/tenant")
async def get_tenant_context(
    tenant: TenantContext = Depends(require_tenant),
) -> dict[str, Any]:
    """Return the resolved tenant context for the caller's session."""
    return {
        **tenant.provider.context.as_dict(),
        "active_org_id": tenant.active_org_id,
        "user_id": tenant.user_id,
    }


@router.post("/session/end")
async def end_session(
    claims: ClerkClaims = Depends(require_claims),
    registry: SessionRegistry = Depends(get_session_registry),
    guard: TenantGuard = Depends(get_tenant_guard),
) -> dict[str, str]:
    """Abandon in-flight tenant checks and drop cached state for this session."""
    ended = registry.end_session(claims.sid)
    guard.forget(claims.sid)
    return {"status": "ended" if ended else "not_found"}

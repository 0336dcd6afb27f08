"""Team API routes: member listing and invitations."""

from __future__ import annotations

from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, HttpUrl
from sqlalchemy.exc import SQLAlchemyError

from portapro.config.settings import get_settings
from portapro.exceptions import AuthorizationError, IdentityProviderError
from portapro.identity.client import ClerkClient
from portapro.models.database import Organization
from portapro.storage.repositories.team import DatabaseTeamRepository, InvitedMember
from portapro.tenancy.hostname import build_tenant_url
from portapro.web.auth.rbac import require_role
from portapro.web.dependencies import get_clerk_client, get_team_repository, require_tenant
from portapro.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/team", tags=["team"])

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class InviteRequest(BaseModel):
    email: str = Field(pattern=_EMAIL_PATTERN, max_length=320)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role: Literal["admin", "dispatcher", "driver", "customer"]
    phone: str | None = None
    organization_id: str | None = None
    organization_slug: str | None = None
    redirect_base: HttpUrl | None = None


def _error(message: str, status: int) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


def _require_organization(tenant: TenantContext) -> Organization:
    if tenant.organization is None:
        raise HTTPException(status_code=404, detail="No organization resolved for this host")
    return tenant.organization


@router.get("/members")
async def list_members(
    tenant: TenantContext = Depends(require_tenant),
    team: DatabaseTeamRepository = Depends(get_team_repository),
) -> list[dict[str, Any]]:
    org = _require_organization(tenant)
    members: list[dict[str, Any]] = await tenant.provider.cache.get_or_fetch(
        ("profiles", org.id), lambda: team.list_profiles(org.id)
    )
    return members


@router.post("/invite", response_model=None)
async def invite_member(
    body: InviteRequest,
    tenant: TenantContext = Depends(require_tenant),
    team: DatabaseTeamRepository = Depends(get_team_repository),
    clerk: ClerkClient = Depends(get_clerk_client),
) -> dict[str, Any] | JSONResponse:
    """Create a Clerk user, send an invitation and record the member for this tenant."""
    org = _require_organization(tenant)

    if body.organization_id and body.organization_id not in (org.id, org.clerk_org_id):
        return _error("Organization mismatch", 403)
    if body.organization_slug and body.organization_slug != org.subdomain:
        return _error("Organization mismatch", 403)

    try:
        await require_role(team, tenant.user_id, org.id, ["admin"])
    except AuthorizationError as exc:
        return _error(str(exc), exc.status)

    settings = get_settings()
    redirect_base = (
        str(body.redirect_base).rstrip("/")
        if body.redirect_base
        else build_tenant_url(org.subdomain, settings.root_domain)
    )
    redirect_url = f"{redirect_base}/sign-in"

    created_user_id: str | None = None
    invitation_id: str | None = None
    try:
        created_user_id = await clerk.create_user(
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            phone=body.phone,
        )
        invitation_id = await clerk.create_invitation(body.email, redirect_url)
        profile_id = await team.add_invited_member(
            InvitedMember(
                organization_id=org.id,
                clerk_user_id=created_user_id,
                invitation_id=invitation_id,
                invited_by=tenant.user_id,
                email=body.email,
                first_name=body.first_name,
                last_name=body.last_name,
                role=body.role,
                phone=body.phone,
                metadata={
                    "redirect_url": redirect_url,
                    "organization_id": org.id,
                    "organization_slug": org.subdomain,
                    "source": "app_route",
                    "app_root": f"https://{settings.root_domain}",
                },
            )
        )
    except (IdentityProviderError, SQLAlchemyError) as exc:
        logger.error("invite_failed", organization_id=org.id, error=str(exc))
        await _cleanup(clerk, created_user_id, invitation_id)
        return _error(str(exc) or "Failed to invite user", 500)

    tenant.provider.cache.invalidate(("profiles", org.id))
    return {
        "success": True,
        "data": {
            "user_id": created_user_id,
            "profile_id": profile_id,
            "invitation_id": invitation_id,
            "redirect_url": redirect_url,
            "organization_id": org.id,
            "email": body.email,
            "role": body.role,
        },
    }


async def _cleanup(clerk: ClerkClient, user_id: str | None, invitation_id: str | None) -> None:
    """Best-effort removal of Clerk objects created before a failure."""
    if user_id:
        try:
            await clerk.delete_user(user_id)
        except IdentityProviderError as exc:
            logger.error("invite_cleanup_user_failed", user_id=user_id, error=str(exc))
    if invitation_id:
        try:
            await clerk.revoke_invitation(invitation_id)
        except IdentityProviderError as exc:
            logger.error(
                "invite_cleanup_invitation_failed", invitation_id=invitation_id, error=str(exc)
            )

"""Team repository: tenant profiles, roles and invitations."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portapro.models.database import Profile, UserInvitation, UserRole, _utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class InvitedMember:
    """Everything needed to record an invited user for one organization."""

    organization_id: str
    clerk_user_id: str
    invitation_id: str
    invited_by: str
    email: str
    first_name: str
    last_name: str
    role: str
    phone: str | None = None
    metadata: dict[str, Any] | None = None


class DatabaseTeamRepository:
    """PostgreSQL-backed store for profiles, user roles and invitations.

    Every query is filtered on ``organization_id``.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def list_profiles(self, organization_id: str) -> list[dict[str, Any]]:
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(Profile)
                .where(col(Profile.organization_id) == organization_id)
                .order_by(col(Profile.last_name), col(Profile.first_name))
            )
            result = await session.execute(stmt)
            profiles = result.scalars().all()
        return [
            {
                "id": p.id,
                "first_name": p.first_name,
                "last_name": p.last_name,
                "email": p.email,
                "status": p.status,
                "is_active": p.is_active,
            }
            for p in profiles
        ]

    async def get_roles(self, clerk_user_id: str, organization_id: str) -> list[str]:
        """Return the roles *clerk_user_id* holds in *organization_id*."""
        async with AsyncSession(self._engine) as session:
            stmt = select(UserRole).where(
                col(UserRole.organization_id) == organization_id,
                col(UserRole.clerk_user_id) == clerk_user_id,
            )
            result = await session.execute(stmt)
            return [r.role for r in result.scalars().all()]

    async def add_invited_member(self, member: InvitedMember) -> str:
        """Insert profile, role and invitation rows in one transaction. Returns the profile id."""
        async with AsyncSession(self._engine) as session:
            profile = Profile(
                id=member.clerk_user_id,
                organization_id=member.organization_id,
                clerk_user_id=member.clerk_user_id,
                first_name=member.first_name,
                last_name=member.last_name,
                email=member.email,
                phone=member.phone,
                is_active=True,
                status="invited",
                status_effective_date=_utc_now(),
            )
            profile_id = profile.id
            session.add(profile)
            session.add(
                UserRole(
                    organization_id=member.organization_id,
                    user_id=profile_id,
                    clerk_user_id=member.clerk_user_id,
                    role=member.role,
                )
            )
            session.add(
                UserInvitation(
                    organization_id=member.organization_id,
                    email=member.email,
                    first_name=member.first_name,
                    last_name=member.last_name,
                    phone=member.phone,
                    role=member.role,
                    invitation_token=member.invitation_id,
                    invited_by=member.invited_by,
                    clerk_user_id=member.clerk_user_id,
                    metadata_json=json.dumps(member.metadata) if member.metadata else None,
                )
            )
            await session.commit()
            logger.info(
                "member_invited",
                organization_id=member.organization_id,
                clerk_user_id=member.clerk_user_id,
                role=member.role,
            )
            return profile_id

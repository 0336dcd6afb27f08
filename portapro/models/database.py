"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _timestamp() -> Any:
    """A UTC timestamp column stored as TIMESTAMP WITH TIME ZONE."""
    return Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenant registry
# ---------------------------------------------------------------------------


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    clerk_org_id: str = Field(unique=True)
    name: str
    subdomain: str = Field(unique=True, index=True)  # lowercase slug
    is_active: bool = Field(default=True)
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


# ---------------------------------------------------------------------------
# Tenant-scoped rows (every row carries organization_id)
# ---------------------------------------------------------------------------


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    clerk_user_id: str | None = Field(default=None, index=True)
    first_name: str
    last_name: str
    email: str = Field(index=True)
    phone: str | None = None
    is_active: bool = Field(default=True)
    status: str = Field(default="active")  # active | invited | inactive
    status_effective_date: datetime = _timestamp()
    created_at: datetime = _timestamp()


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    user_id: str = Field(index=True)
    clerk_user_id: str | None = Field(default=None, index=True)
    role: str  # admin | dispatcher | driver | customer
    created_at: datetime = _timestamp()


class UserInvitation(SQLModel, table=True):
    __tablename__ = "user_invitations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    role: str
    status: str = Field(default="pending")  # pending | accepted | revoked
    invitation_token: str
    invitation_type: str = Field(default="clerk_invitation")
    invited_by: str
    clerk_user_id: str | None = None
    metadata_json: str | None = None
    sent_at: datetime = _timestamp()
    created_at: datetime = _timestamp()

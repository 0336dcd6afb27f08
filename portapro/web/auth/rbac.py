"""Role checks against the tenant's ``user_roles`` rows."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

import structlog

from portapro.exceptions import AuthorizationError

logger = structlog.get_logger(__name__)


class RoleSource(Protocol):
    async def get_roles(self, clerk_user_id: str, organization_id: str) -> list[str]: ...


async def require_role(
    roles: RoleSource,
    clerk_user_id: str,
    organization_id: str,
    required_roles: Iterable[str],
) -> str:
    """Return the first matching role, or raise AuthorizationError (403)."""
    required = tuple(required_roles)
    held = await roles.get_roles(clerk_user_id, organization_id)
    for role in held:
        if role in required:
            return role
    logger.warning(
        "role_check_failed",
        clerk_user_id=clerk_user_id,
        organization_id=organization_id,
        required=list(required),
        held=held,
    )
    raise AuthorizationError(f"Requires one of roles: {', '.join(required)}")

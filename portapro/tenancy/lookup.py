"""Organization lookup by subdomain.

The lookup never raises: it returns one of three tagged results so callers
can tell an unknown tenant apart from an unreachable database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from portapro.exceptions import OrganizationLookupError
from portapro.models.database import Organization
from portapro.utils.retry import retry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Found:
    organization: Organization


@dataclass(frozen=True, slots=True)
class NotFound:
    subdomain: str


@dataclass(frozen=True, slots=True)
class TransportError:
    subdomain: str
    detail: str


LookupResult = Found | NotFound | TransportError


class OrganizationRepository(Protocol):
    async def get_active_by_subdomain(self, subdomain: str) -> Organization | None:
        """Return the single active organization for *subdomain*, or None.

        Raises OrganizationLookupError when the store cannot be reached.
        """
        ...


class DatabaseOrganizationRepository:
    """Reads the ``organizations`` table through SQLModel."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_active_by_subdomain(self, subdomain: str) -> Organization | None:
        stmt = (
            select(Organization)
            .where(
                col(Organization.subdomain) == subdomain,
                col(Organization.is_active).is_(True),
            )
            .limit(2)
        )
        try:
            async with AsyncSession(self._engine) as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except (SQLAlchemyError, OSError) as exc:
            raise OrganizationLookupError(str(exc)) from exc

        if len(rows) > 1:
            logger.error("duplicate_active_subdomain", subdomain=subdomain)
            return None
        return rows[0] if rows else None


class InMemoryOrganizationRepository:
    """Dict-backed organization store for development and tests."""

    def __init__(self, organizations: list[Organization] | None = None) -> None:
        self._orgs: list[Organization] = list(organizations or [])

    def add(self, organization: Organization) -> None:
        self._orgs.append(organization)

    async def get_active_by_subdomain(self, subdomain: str) -> Organization | None:
        matches = [o for o in self._orgs if o.subdomain == subdomain and o.is_active]
        if len(matches) > 1:
            logger.error("duplicate_active_subdomain", subdomain=subdomain)
            return None
        return matches[0] if matches else None


async def lookup_organization(
    repo: OrganizationRepository,
    subdomain: str,
    max_attempts: int = 3,
    delay_ms: int = 200,
) -> LookupResult:
    """Resolve *subdomain* to an active organization.

    Store failures are retried with backoff before being reported as
    :class:`TransportError`.
    """

    @retry(max_attempts=max_attempts, delay_ms=delay_ms, retry_on=(OrganizationLookupError,))
    async def _fetch() -> Organization | None:
        return await repo.get_active_by_subdomain(subdomain)

    try:
        org = await _fetch()
    except OrganizationLookupError as exc:
        logger.warning("organization_lookup_unavailable", subdomain=subdomain, error=str(exc))
        return TransportError(subdomain=subdomain, detail=str(exc))

    if org is None:
        logger.info("organization_not_found", subdomain=subdomain)
        return NotFound(subdomain=subdomain)

    return Found(organization=org)

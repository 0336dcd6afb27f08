"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from portapro.exceptions import IdentityProviderError, OrganizationLookupError
from portapro.identity.clerk import ClerkClaims
from portapro.identity.client import Membership
from portapro.models.database import Organization, UserRole
from portapro.storage.database import init_db
from portapro.tenancy.context import SessionRegistry
from portapro.tenancy.guard import TenantGuard
from portapro.tenancy.lookup import InMemoryOrganizationRepository
from portapro.web.app import create_app
from portapro.web.dependencies import (
    get_clerk_client,
    get_current_claims,
    get_db_engine,
    get_session_registry,
    get_tenant_guard,
)

ROOT_DOMAIN = "portaprosoftware.com"
ACME_ROW_ID = "11111111-1111-1111-1111-111111111111"


class FakeIdentity:
    """Records identity-provider calls made by the tenant guard."""

    def __init__(self, memberships: list[Membership] | None = None) -> None:
        self.memberships = list(memberships or [])
        self.list_calls = 0
        self.set_calls: list[str] = []
        self.fail_set = False
        self.fail_list = False

    async def list_memberships(self, user_id: str) -> list[Membership]:
        self.list_calls += 1
        if self.fail_list:
            raise IdentityProviderError("clerk unavailable", status=503)
        return list(self.memberships)

    async def set_active_organization(self, user_id: str, org_id: str) -> None:
        if self.fail_set:
            raise IdentityProviderError("clerk unavailable", status=503)
        self.set_calls.append(org_id)


class CountingRepository(InMemoryOrganizationRepository):
    """In-memory organization store that counts lookups and can simulate outages."""

    def __init__(self, organizations: list[Organization] | None = None) -> None:
        super().__init__(organizations)
        self.calls = 0
        self.failures_left = 0

    async def get_active_by_subdomain(self, subdomain: str) -> Organization | None:
        self.calls += 1
        if self.failures_left:
            self.failures_left -= 1
            raise OrganizationLookupError("connection refused")
        return await super().get_active_by_subdomain(subdomain)


class FakeClerk:
    """Stands in for ClerkClient on the invite route."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail_invitation = False

    async def create_user(
        self, email: str, first_name: str, last_name: str, phone: str | None = None
    ) -> str:
        self.calls.append(("create_user", email))
        return "user_new"

    async def create_invitation(self, email: str, redirect_url: str) -> str:
        self.calls.append(("create_invitation", redirect_url))
        if self.fail_invitation:
            raise IdentityProviderError("invitation rejected", status=422)
        return "inv_1"

    async def delete_user(self, user_id: str) -> None:
        self.calls.append(("delete_user", user_id))

    async def revoke_invitation(self, invitation_id: str) -> None:
        self.calls.append(("revoke_invitation", invitation_id))


def make_acme() -> Organization:
    return Organization(
        id=ACME_ROW_ID,
        clerk_org_id="org_123",
        name="Acme Rentals",
        subdomain="acme",
        is_active=True,
    )


@pytest.fixture()
def acme() -> Organization:
    return make_acme()


@pytest.fixture()
def organizations(acme: Organization) -> CountingRepository:
    return CountingRepository([acme])


@pytest.fixture()
def identity() -> FakeIdentity:
    return FakeIdentity([Membership(org_id="org_123", slug="acme", name="Acme Rentals")])


@pytest.fixture()
def guard(organizations: CountingRepository, identity: FakeIdentity) -> TenantGuard:
    return TenantGuard(
        organizations=organizations,
        identity=identity,
        root_domain=ROOT_DOMAIN,
        lookup_attempts=3,
        lookup_delay_ms=0,
    )


@pytest.fixture()
def claims() -> ClerkClaims:
    return ClerkClaims(sub="user_1", sid="sess_1", org_id=None, email="ops@acme.test")


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def clerk() -> FakeClerk:
    return FakeClerk()


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created + the acme organization."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)

    async with AsyncSession(engine) as session:
        session.add(make_acme())
        session.add(
            UserRole(
                organization_id=ACME_ROW_ID,
                user_id="profile_admin",
                clerk_user_id="user_1",
                role="admin",
            )
        )
        await session.commit()

    yield engine
    await engine.dispose()


@pytest.fixture()
def app(guard, claims, registry, clerk, async_engine):
    """A fresh app wired to fakes: signed in as ``claims`` unless overridden."""
    application = create_app()
    application.dependency_overrides[get_tenant_guard] = lambda: guard
    application.dependency_overrides[get_current_claims] = lambda: claims
    application.dependency_overrides[get_session_registry] = lambda: registry
    application.dependency_overrides[get_clerk_client] = lambda: clerk
    application.dependency_overrides[get_db_engine] = lambda: async_engine
    return application


@pytest.fixture()
async def acme_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=f"http://acme.{ROOT_DOMAIN}") as client:
        yield client

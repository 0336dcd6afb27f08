"""FastAPI dependency injection and shared state."""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote, urlsplit

import httpx
import jwt
import structlog
from fastapi import Depends, HTTPException, Request

from portapro.config.settings import get_settings
from portapro.exceptions import ConfigError, GuardCancelled
from portapro.identity.clerk import ClerkClaims, verify_clerk_token
from portapro.identity.client import ClerkClient, create_clerk_client
from portapro.storage.repositories.team import DatabaseTeamRepository
from portapro.tenancy.context import SessionRegistry
from portapro.tenancy.guard import DASHBOARD_PATH, GuardDecision, TenantGuard
from portapro.tenancy.lookup import (
    DatabaseOrganizationRepository,
    InMemoryOrganizationRepository,
    OrganizationRepository,
)
from portapro.web.tenant_context import TenantContext

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

SESSION_COOKIE = "__session"


class TenantRedirect(Exception):  # noqa: N818
    """Raised by :func:`require_tenant` when the guard does not let a request through."""

    def __init__(self, decision: GuardDecision) -> None:
        super().__init__(decision.outcome.value)
        self.decision = decision


# ---------------------------------------------------------------------------
# Shared singletons
# ---------------------------------------------------------------------------


@lru_cache
def get_db_engine() -> AsyncEngine:
    from portapro.storage.database import get_engine

    return get_engine()


@lru_cache
def get_org_repository() -> OrganizationRepository:
    """Create the organization store based on settings."""
    if get_settings().use_database:
        return DatabaseOrganizationRepository(get_db_engine())
    logger.warning("organization_store_in_memory")
    return InMemoryOrganizationRepository()


@lru_cache
def get_clerk_client() -> ClerkClient:
    return create_clerk_client()


@lru_cache
def get_session_registry() -> SessionRegistry:
    settings = get_settings()
    return SessionRegistry(
        idle_ttl_seconds=settings.session_idle_ttl_seconds,
        max_sessions=settings.max_sessions,
        on_evict=_forget_session,
    )


def _forget_session(session_id: str) -> None:
    get_tenant_guard().forget(session_id)


@lru_cache
def get_tenant_guard() -> TenantGuard:
    settings = get_settings()
    return TenantGuard(
        organizations=get_org_repository(),
        identity=get_clerk_client(),
        root_domain=settings.root_domain,
        dev_subdomain=settings.dev_subdomain,
        lookup_attempts=settings.lookup_retry_attempts,
        lookup_delay_ms=settings.lookup_retry_delay_ms,
        recheck_seconds=settings.tenant_recheck_seconds,
    )


def get_team_repository(
    engine: AsyncEngine = Depends(get_db_engine),
) -> DatabaseTeamRepository:
    return DatabaseTeamRepository(engine)


# ---------------------------------------------------------------------------
# Authentication and tenant resolution
# ---------------------------------------------------------------------------


def _session_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


async def get_current_claims(request: Request) -> ClerkClaims | None:
    """Return the verified Clerk claims, or None when the request is not signed in."""
    token = _session_token(request)
    if not token:
        return None
    try:
        return await verify_clerk_token(token)
    except (jwt.PyJWTError, httpx.HTTPError, ConfigError) as exc:
        logger.warning("clerk_token_invalid", error=str(exc))
        return None


async def require_claims(
    claims: ClerkClaims | None = Depends(get_current_claims),
) -> ClerkClaims:
    if claims is None:
        raise HTTPException(status_code=401, detail="Sign-in required")
    return claims


async def require_tenant(
    request: Request,
    claims: ClerkClaims | None = Depends(get_current_claims),
    guard: TenantGuard = Depends(get_tenant_guard),
    registry: SessionRegistry = Depends(get_session_registry),
) -> TenantContext:
    """Protected-route flow: sign-in first, then the tenant guard."""
    if claims is None:
        raise HTTPException(status_code=401, detail="Sign-in required")

    # The token's org_id only seeds a new session. After that the guard's setter
    # owns the active organization: it writes user metadata, not the Clerk
    # session, so later tokens keep reporting the org the session started with.
    provider = registry.get_or_create(claims.sid, active_org_id=claims.org_id)
    try:
        decision = await guard.check(
            path=request.url.path,
            hostname=request.headers.get("host", ""),
            claims=claims,
            provider=provider,
            org_param=request.query_params.get("org"),
        )
    except GuardCancelled as exc:
        logger.info("tenant_check_cancelled", session_id=claims.sid)
        raise HTTPException(status_code=401, detail="Session ended") from exc

    if not decision.outcome.proceeds:
        raise TenantRedirect(decision)

    return TenantContext(
        user_id=claims.sub,
        session_id=claims.sid,
        email=claims.email,
        organization=decision.organization,
        active_org_id=provider.active_org_id,
        provider=provider,
    )


def safe_redirect_path(target: str, default: str = DASHBOARD_PATH) -> str:
    """Return *target* if it is a same-origin path, otherwise *default*.

    Browsers read a backslash as a slash, so ``/\\host`` counts as off-site, also
    when percent-encoded.
    """
    decoded = unquote(target)
    if not target.startswith("/") or "\\" in decoded:
        return default
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in decoded):
        return default
    parts = urlsplit(target)
    if parts.scheme or parts.netloc:
        return default
    return target


def sign_in_location(target: str) -> str:
    """Sign-in URL that returns to *target* (path plus query) afterwards."""
    return f"/auth?redirect_url={quote(safe_redirect_path(target), safe='/')}"

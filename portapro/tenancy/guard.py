"""Tenant guard: decides whether a request may proceed on the host it arrived at.

The pipeline is hostname classification -> organization lookup -> membership
match -> active-organization update -> redirect decision. :func:`decide` is
the pure decision table; :class:`TenantGuard` runs the async steps around it.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from portapro.exceptions import IdentityProviderError
from portapro.tenancy.hostname import (
    HostInfo,
    build_tenant_url,
    classify_hostname,
    marketing_url,
)
from portapro.tenancy.lookup import (
    Found,
    LookupResult,
    NotFound,
    OrganizationRepository,
    TransportError,
    lookup_organization,
)
from portapro.tenancy.membership import (
    find_membership,
    find_membership_by_slug,
    membership_version,
)

if TYPE_CHECKING:
    from portapro.identity.clerk import ClerkClaims
    from portapro.identity.client import IdentityProvider, Membership
    from portapro.models.database import Organization
    from portapro.tenancy.context import ResolvedTenantContext, TenantContextProvider

logger = structlog.get_logger(__name__)

UNAUTHORIZED_PATH = "/unauthorized"
AUTH_PATH = "/auth"
DASHBOARD_PATH = "/dashboard"


def is_public_route(path: str) -> bool:
    """Routes that never run the guard, so redirects cannot loop."""
    return path == UNAUTHORIZED_PATH or path.startswith(AUTH_PATH) or path == "/api/health"


class GuardOutcome(StrEnum):
    CHECKING = "checking"
    PUBLIC_ROUTE_BYPASS = "public-route-bypass"
    UNAUTHENTICATED_PASSTHROUGH = "unauthenticated-passthrough"
    REDIRECT_MARKETING = "redirect-marketing"
    REDIRECT_UNAUTHORIZED = "redirect-unauthorized"
    REDIRECT_DASHBOARD = "redirect-dashboard-on-active-org"
    ALLOW = "allow"
    LOOKUP_UNAVAILABLE = "lookup-unavailable"

    @property
    def proceeds(self) -> bool:
        return self in _PROCEEDING


_PROCEEDING = frozenset(
    {
        GuardOutcome.PUBLIC_ROUTE_BYPASS,
        GuardOutcome.UNAUTHENTICATED_PASSTHROUGH,
        GuardOutcome.ALLOW,
    }
)


@dataclass(frozen=True, slots=True)
class GuardInputs:
    path: str
    host: HostInfo
    root_domain: str
    user_id: str | None = None
    user_loaded: bool = True
    memberships_loaded: bool = True
    memberships: tuple[Membership, ...] = ()
    active_org_id: str | None = None
    org_param: str | None = None
    dev_subdomain: str | None = None
    lookup: LookupResult | None = None


@dataclass(frozen=True, slots=True)
class GuardDecision:
    outcome: GuardOutcome
    location: str | None = None
    full_reload: bool = False  # True when the redirect leaves the current origin
    activate: str | None = None  # Clerk org id that must be active
    organization: Organization | None = None
    reason: str = ""


def lookup_subdomain(inputs: GuardInputs) -> str | None:
    """The subdomain that has to be resolved against the organizations table, if any."""
    if inputs.host.subdomain:
        return inputs.host.subdomain
    if inputs.host.is_localhost and not inputs.org_param and inputs.dev_subdomain:
        return inputs.dev_subdomain
    return None


def _unauthorized(reason: str, organization: Organization | None = None) -> GuardDecision:
    return GuardDecision(
        outcome=GuardOutcome.REDIRECT_UNAUTHORIZED,
        location=UNAUTHORIZED_PATH,
        organization=organization,
        reason=reason,
    )


def decide(inputs: GuardInputs) -> GuardDecision:
    """Map a fully or partially resolved input set to exactly one outcome."""
    if is_public_route(inputs.path):
        return GuardDecision(outcome=GuardOutcome.PUBLIC_ROUTE_BYPASS)

    if not inputs.user_loaded or (inputs.user_id and not inputs.memberships_loaded):
        return GuardDecision(outcome=GuardOutcome.CHECKING)

    if inputs.user_id is None:
        return GuardDecision(outcome=GuardOutcome.UNAUTHENTICATED_PASSTHROUGH)

    host = inputs.host
    memberships = inputs.memberships

    if host.is_main_domain:
        if not memberships:
            return _unauthorized("no memberships")
        # No chooser on the main domain: the first membership wins
        first = memberships[0]
        return GuardDecision(
            outcome=GuardOutcome.REDIRECT_DASHBOARD,
            location=build_tenant_url(first.slug, inputs.root_domain, DASHBOARD_PATH),
            full_reload=True,
        )

    subdomain = lookup_subdomain(inputs)

    if host.is_localhost and subdomain is None:
        if inputs.org_param:
            chosen = find_membership_by_slug(memberships, inputs.org_param)
            if chosen is None:
                return _unauthorized(f"no membership for org {inputs.org_param!r}")
            return GuardDecision(
                outcome=GuardOutcome.REDIRECT_DASHBOARD,
                location=DASHBOARD_PATH,
                activate=chosen.org_id,
            )
        if not memberships:
            return _unauthorized("no memberships")
        active = (
            find_membership(memberships, inputs.active_org_id) if inputs.active_org_id else None
        )
        return GuardDecision(
            outcome=GuardOutcome.ALLOW,
            activate=(active or memberships[0]).org_id,
        )

    lookup = inputs.lookup
    if lookup is None:
        return GuardDecision(outcome=GuardOutcome.CHECKING)

    if isinstance(lookup, TransportError):
        return GuardDecision(outcome=GuardOutcome.LOOKUP_UNAVAILABLE, reason=lookup.detail)

    if isinstance(lookup, NotFound):
        if host.is_localhost:
            return _unauthorized(f"unknown subdomain {lookup.subdomain!r}")
        return GuardDecision(
            outcome=GuardOutcome.REDIRECT_MARKETING,
            location=marketing_url(inputs.root_domain),
            full_reload=True,
            reason=f"unknown subdomain {lookup.subdomain!r}",
        )

    org = lookup.organization
    if find_membership(memberships, org.clerk_org_id) is None:
        return _unauthorized("not a member of this organization", organization=org)

    return GuardDecision(outcome=GuardOutcome.ALLOW, activate=org.clerk_org_id, organization=org)


@dataclass(frozen=True, slots=True)
class _MemoEntry:
    decision: GuardDecision
    context: ResolvedTenantContext
    stored_at: float


class TenantGuard:
    """Runs the tenant pipeline for a session.

    Resolutions are memoized per (session, user, hostname, ``?org=``,
    membership list) so repeated requests with unchanged inputs do not repeat
    the lookup. Concurrent checks for the same key share one run.

    Memberships and memoized resolutions are reloaded once they are older
    than ``recheck_seconds``, so a revoked membership or a deactivated
    organization takes effect without waiting for the session to end.
    """

    def __init__(
        self,
        organizations: OrganizationRepository,
        identity: IdentityProvider,
        root_domain: str,
        dev_subdomain: str | None = None,
        lookup_attempts: int = 3,
        lookup_delay_ms: int = 200,
        recheck_seconds: float = 60,
    ) -> None:
        self._organizations = organizations
        self._identity = identity
        self._root_domain = root_domain
        self._dev_subdomain = dev_subdomain
        self._lookup_attempts = lookup_attempts
        self._lookup_delay_ms = lookup_delay_ms
        self._recheck_seconds = recheck_seconds
        self._memo: dict[str, dict[tuple[object, ...], _MemoEntry]] = {}
        self._locks: dict[tuple[object, ...], asyncio.Lock] = {}
        self._lock_users: dict[tuple[object, ...], int] = {}

    async def check(
        self,
        *,
        path: str,
        hostname: str,
        claims: ClerkClaims | None,
        provider: TenantContextProvider | None,
        org_param: str | None = None,
    ) -> GuardDecision:
        if is_public_route(path):
            return GuardDecision(outcome=GuardOutcome.PUBLIC_ROUTE_BYPASS)
        if claims is None or provider is None:
            return GuardDecision(outcome=GuardOutcome.UNAUTHENTICATED_PASSTHROUGH)

        token = provider.token
        host = classify_hostname(hostname, self._root_domain)
        if not host.is_localhost:
            org_param = None
        structlog.contextvars.bind_contextvars(subdomain=host.subdomain)

        now = time.monotonic()
        if (
            provider.memberships is None
            or now - provider.memberships_loaded_at >= self._recheck_seconds
        ):
            if provider.memberships is None:
                provider.update(
                    is_loading=True,
                    subdomain=host.subdomain,
                    is_localhost=host.is_localhost,
                    is_main_domain=host.is_main_domain,
                )
            try:
                loaded = await self._identity.list_memberships(claims.sub)
            except IdentityProviderError as exc:
                logger.warning("memberships_unavailable", user_id=claims.sub, error=str(exc))
                provider.update(is_loading=False, error=str(exc))
                return GuardDecision(outcome=GuardOutcome.LOOKUP_UNAVAILABLE, reason=str(exc))
            token.raise_if_cancelled()
            provider.memberships = tuple(loaded)
            provider.memberships_loaded_at = now

        memberships = provider.memberships
        key: tuple[object, ...] = (
            claims.sub,
            host.hostname,
            org_param,
            membership_version(memberships),
            # Localhost picks a membership relative to whatever is already active
            provider.active_org_id if host.is_localhost else None,
        )
        lock_key = (provider.session_id, *key)

        lock = self._locks.setdefault(lock_key, asyncio.Lock())
        self._lock_users[lock_key] = self._lock_users.get(lock_key, 0) + 1
        try:
            async with lock:
                decision = self._memoized(key, provider, now)
                if decision is None:
                    decision = await self._resolve(
                        path=path,
                        host=host,
                        user_id=claims.sub,
                        memberships=memberships,
                        active_org_id=provider.active_org_id,
                        org_param=org_param,
                        provider=provider,
                    )
                    if decision.outcome is not GuardOutcome.LOOKUP_UNAVAILABLE:
                        self._remember(provider.session_id, key, decision, provider.context, now)
        finally:
            self._release_lock(lock_key)

        return await self._activate(decision, claims.sub, provider)

    def _memoized(
        self, key: tuple[object, ...], provider: TenantContextProvider, now: float
    ) -> GuardDecision | None:
        entry = self._memo.get(provider.session_id, {}).get(key)
        if entry is None or now - entry.stored_at >= self._recheck_seconds:
            return None
        provider.restore(entry.context)
        return entry.decision

    def _remember(
        self,
        session_id: str,
        key: tuple[object, ...],
        decision: GuardDecision,
        context: ResolvedTenantContext,
        now: float,
    ) -> None:
        entries = self._memo.setdefault(session_id, {})
        for stale in [k for k, e in entries.items() if now - e.stored_at >= self._recheck_seconds]:
            del entries[stale]
        entries[key] = _MemoEntry(decision=decision, context=context, stored_at=now)

    def _release_lock(self, lock_key: tuple[object, ...]) -> None:
        users = self._lock_users.get(lock_key, 1) - 1
        if users > 0:
            self._lock_users[lock_key] = users
            return
        self._lock_users.pop(lock_key, None)
        self._locks.pop(lock_key, None)

    async def _resolve(
        self,
        *,
        path: str,
        host: HostInfo,
        user_id: str,
        memberships: tuple[Membership, ...],
        active_org_id: str | None,
        org_param: str | None,
        provider: TenantContextProvider,
    ) -> GuardDecision:
        inputs = GuardInputs(
            path=path,
            host=host,
            root_domain=self._root_domain,
            user_id=user_id,
            memberships=memberships,
            active_org_id=active_org_id,
            org_param=org_param,
            dev_subdomain=self._dev_subdomain,
        )
        subdomain = lookup_subdomain(inputs) if not host.is_main_domain else None

        lookup: LookupResult | None = None
        if subdomain is not None:
            provider.update(is_loading=True, subdomain=subdomain)
            lookup = await lookup_organization(
                self._organizations,
                subdomain,
                max_attempts=self._lookup_attempts,
                delay_ms=self._lookup_delay_ms,
            )
            provider.token.raise_if_cancelled()
            inputs = replace(inputs, lookup=lookup)

        decision = decide(inputs)

        error: str | None = None
        if isinstance(lookup, NotFound):
            error = "Organization not found"
        elif isinstance(lookup, TransportError):
            error = lookup.detail
        provider.update(
            subdomain=subdomain,
            organization=lookup.organization if isinstance(lookup, Found) else None,
            is_loading=False,
            error=error,
            is_localhost=host.is_localhost,
            is_main_domain=host.is_main_domain,
        )
        logger.info(
            "tenant_guard_decision",
            outcome=decision.outcome.value,
            hostname=host.hostname,
            subdomain=subdomain,
            location=decision.location,
            reason=decision.reason or None,
        )
        return decision

    async def _activate(
        self, decision: GuardDecision, user_id: str, provider: TenantContextProvider
    ) -> GuardDecision:
        """Make ``decision.activate`` the active organization unless it already is."""
        target = decision.activate
        if target is None or target == provider.active_org_id:
            return decision

        provider.token.raise_if_cancelled()
        try:
            await self._identity.set_active_organization(user_id, target)
        except IdentityProviderError as exc:
            logger.warning("active_org_set_failed", user_id=user_id, org_id=target, error=str(exc))
            return GuardDecision(outcome=GuardOutcome.LOOKUP_UNAVAILABLE, reason=str(exc))

        provider.set_active_organization(target)
        return decision

    def forget(self, session_id: str) -> None:
        """Drop memoized resolutions for an ended or evicted session."""
        self._memo.pop(session_id, None)

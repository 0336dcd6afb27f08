"""Resolved tenant context, its per-session provider and the session registry."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, replace

import structlog

from portapro.exceptions import GuardCancelled
from portapro.identity.client import Membership
from portapro.models.database import Organization
from portapro.tenancy.cache import QueryCache

logger = structlog.get_logger(__name__)


class CancelToken:
    """Cancellation flag tied to the lifetime of one session."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise GuardCancelled("tenant check abandoned: session ended")


@dataclass(frozen=True, slots=True)
class ResolvedTenantContext:
    subdomain: str | None = None
    organization: Organization | None = None
    is_loading: bool = True
    error: str | None = None
    is_localhost: bool = False
    is_main_domain: bool = False

    def as_dict(self) -> dict[str, object]:
        org = self.organization
        return {
            "subdomain": self.subdomain,
            "organization": (
                {
                    "id": org.id,
                    "clerk_org_id": org.clerk_org_id,
                    "name": org.name,
                    "subdomain": org.subdomain,
                }
                if org
                else None
            ),
            "is_loading": self.is_loading,
            "error": self.error,
            "is_localhost": self.is_localhost,
            "is_main_domain": self.is_main_domain,
        }


class TenantContextProvider:
    """Holds the resolved tenant context and query cache for one session.

    The cache is dropped entirely whenever the active organization changes
    from one known id to a different one.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.cache = QueryCache()
        self.token = CancelToken()
        self._context = ResolvedTenantContext()
        self._previous_org_id: str | None = None
        self.memberships: tuple[Membership, ...] | None = None
        self.memberships_loaded_at = 0.0
        self.last_seen = 0.0

    @property
    def context(self) -> ResolvedTenantContext:
        return self._context

    @property
    def active_org_id(self) -> str | None:
        return self._previous_org_id

    def update(self, **changes: object) -> ResolvedTenantContext:
        self.token.raise_if_cancelled()
        self._context = replace(self._context, **changes)  # type: ignore[arg-type]
        return self._context

    def restore(self, context: ResolvedTenantContext) -> None:
        """Reinstate a previously resolved context without re-running the lookup."""
        self.token.raise_if_cancelled()
        self._context = context

    def set_active_organization(self, org_id: str | None) -> bool:
        """Record the active organization. Returns True if the cache was cleared."""
        self.token.raise_if_cancelled()
        if org_id is None:
            return False
        previous = self._previous_org_id
        self._previous_org_id = org_id
        if previous is not None and previous != org_id:
            logger.info(
                "active_org_changed",
                session_id=self.session_id,
                previous_org_id=previous,
                org_id=org_id,
            )
            self.cache.clear()
            return True
        return False

    def close(self) -> None:
        self.token.cancel()


class SessionRegistry:
    """Maps Clerk session ids to their context providers.

    Sessions that sign out through the API are removed by :meth:`end_session`.
    Everything else expires: a session idle for ``idle_ttl_seconds`` is
    evicted, and once ``max_sessions`` is exceeded the least recently used
    one goes first. ``on_evict`` is called with each evicted session id.
    """

    def __init__(
        self,
        idle_ttl_seconds: float = 3600,
        max_sessions: int = 10_000,
        on_evict: Callable[[str], None] | None = None,
    ) -> None:
        self._providers: OrderedDict[str, TenantContextProvider] = OrderedDict()
        self._idle_ttl = idle_ttl_seconds
        self._max_sessions = max_sessions
        self._on_evict = on_evict

    def __len__(self) -> int:
        return len(self._providers)

    def get(self, session_id: str) -> TenantContextProvider | None:
        return self._providers.get(session_id)

    def get_or_create(
        self, session_id: str, active_org_id: str | None = None
    ) -> TenantContextProvider:
        now = time.monotonic()
        self._evict_idle(now)

        provider = self._providers.get(session_id)
        if provider is None:
            provider = TenantContextProvider(session_id)
            provider.set_active_organization(active_org_id)
            self._providers[session_id] = provider
            logger.debug("session_provider_created", session_id=session_id)
        else:
            self._providers.move_to_end(session_id)
        provider.last_seen = now

        while len(self._providers) > self._max_sessions:
            oldest = next(iter(self._providers))
            self._evict(oldest, reason="capacity")
        return provider

    def end_session(self, session_id: str) -> bool:
        """Cancel in-flight checks for *session_id* and forget its state."""
        provider = self._providers.pop(session_id, None)
        if provider is None:
            return False
        provider.close()
        logger.info("session_ended", session_id=session_id)
        return True

    def _evict_idle(self, now: float) -> None:
        # Ordered by last use, so the scan stops at the first live session
        while self._providers:
            session_id, provider = next(iter(self._providers.items()))
            if now - provider.last_seen < self._idle_ttl:
                break
            self._evict(session_id, reason="idle")

    def _evict(self, session_id: str, reason: str) -> None:
        provider = self._providers.pop(session_id)
        provider.close()
        logger.info("session_evicted", session_id=session_id, reason=reason)
        if self._on_evict is not None:
            self._on_evict(session_id)

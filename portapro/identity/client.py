"""Clerk Backend API client: memberships, active organization, invitations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from portapro.config.settings import get_settings
from portapro.exceptions import ConfigError, IdentityProviderError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Membership:
    """A user-to-organization edge as reported by Clerk."""

    org_id: str
    slug: str
    name: str = ""
    role: str = "org:member"


class IdentityProvider(Protocol):
    """What the tenant guard needs from the identity provider."""

    async def list_memberships(self, user_id: str) -> list[Membership]: ...

    async def set_active_organization(self, user_id: str, org_id: str) -> None: ...


def membership_from_payload(item: dict[str, Any]) -> Membership:
    org = item.get("organization") or {}
    return Membership(
        org_id=str(org.get("id", "")),
        slug=str(org.get("slug") or ""),
        name=str(org.get("name") or ""),
        role=str(item.get("role") or "org:member"),
    )


class ClerkClient:
    """Thin async wrapper over the Clerk Backend API."""

    def __init__(
        self,
        secret_key: str,
        api_url: str = "https://api.clerk.com/v1",
        page_size: int = 100,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._http = http or httpx.AsyncClient(
            base_url=api_url,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=10.0,
        )
        self._page_size = page_size

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("clerk_request_failed", method=method, path=path, error=str(exc))
            raise IdentityProviderError(f"Clerk request failed: {exc}") from exc

        if resp.status_code >= 400:
            detail = _error_message(resp)
            logger.warning(
                "clerk_request_rejected",
                method=method,
                path=path,
                status=resp.status_code,
                detail=detail,
            )
            raise IdentityProviderError(detail, status=resp.status_code)

        if not resp.content:
            return {}
        body: dict[str, Any] = resp.json()
        return body

    # --- Memberships ---

    async def list_memberships(self, user_id: str) -> list[Membership]:
        """Return every organization membership of *user_id*, following pagination."""
        memberships: list[Membership] = []
        offset = 0
        while True:
            page = await self._request(
                "GET",
                f"/users/{user_id}/organization_memberships",
                params={"limit": self._page_size, "offset": offset},
            )
            items = page.get("data", [])
            memberships.extend(membership_from_payload(item) for item in items)
            offset += len(items)
            total = int(page.get("total_count", offset))
            if not items or offset >= total:
                break
        logger.debug("memberships_loaded", user_id=user_id, count=len(memberships))
        return memberships

    async def set_active_organization(self, user_id: str, org_id: str) -> None:
        """Record *org_id* as the user's active organization."""
        await self._request(
            "PATCH",
            f"/users/{user_id}/metadata",
            json={"public_metadata": {"active_organization_id": org_id}},
        )
        logger.info("active_org_set", user_id=user_id, org_id=org_id)

    # --- Users and invitations ---

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "email_address": [email],
            "first_name": first_name,
            "last_name": last_name,
        }
        if phone:
            payload["phone_number"] = [phone]
        body = await self._request("POST", "/users", json=payload)
        return str(body["id"])

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{user_id}")

    async def create_invitation(self, email: str, redirect_url: str) -> str:
        body = await self._request(
            "POST",
            "/invitations",
            json={"email_address": email, "redirect_url": redirect_url},
        )
        return str(body["id"])

    async def revoke_invitation(self, invitation_id: str) -> None:
        await self._request("POST", f"/invitations/{invitation_id}/revoke")


def _error_message(resp: httpx.Response) -> str:
    try:
        errors = resp.json().get("errors") or []
    except ValueError:
        errors = []
    if errors:
        first = errors[0]
        return str(first.get("long_message") or first.get("message") or resp.reason_phrase)
    return f"Clerk responded with {resp.status_code}"


def create_clerk_client() -> ClerkClient:
    """Build a :class:`ClerkClient` from settings."""
    settings = get_settings()
    if not settings.clerk_secret_key:
        msg = "CLERK_SECRET_KEY is not configured"
        raise ConfigError(msg)
    return ClerkClient(
        secret_key=settings.clerk_secret_key,
        api_url=settings.clerk_api_url,
        page_size=settings.membership_page_size,
    )

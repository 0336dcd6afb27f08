"""Unit tests for the Clerk Backend API client, using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from portapro.exceptions import IdentityProviderError
from portapro.identity.client import ClerkClient, Membership, membership_from_payload


def _client(handler) -> ClerkClient:
    http = httpx.AsyncClient(
        base_url="https://api.clerk.test/v1", transport=httpx.MockTransport(handler)
    )
    return ClerkClient(secret_key="sk_test", page_size=2, http=http)


def _membership(org_id: str, slug: str) -> dict[str, object]:
    return {"role": "org:admin", "organization": {"id": org_id, "slug": slug, "name": slug.title()}}


@pytest.mark.unit
class TestMembershipPayload:
    def test_parses_nested_organization(self) -> None:
        membership = membership_from_payload(_membership("org_1", "acme"))
        assert membership == Membership(org_id="org_1", slug="acme", name="Acme", role="org:admin")

    def test_missing_fields_default(self) -> None:
        membership = membership_from_payload({"organization": {"id": "org_1"}})
        assert membership.slug == ""
        assert membership.role == "org:member"


@pytest.mark.unit
class TestListMemberships:
    async def test_follows_pagination(self) -> None:
        pages = {
            "0": [_membership("org_1", "acme"), _membership("org_2", "beta")],
            "2": [_membership("org_3", "gamma")],
        }
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/users/user_1/organization_memberships"
            offset = request.url.params["offset"]
            seen.append(offset)
            return httpx.Response(200, json={"data": pages[offset], "total_count": 3})

        client = _client(handler)
        memberships = await client.list_memberships("user_1")
        await client.aclose()

        assert [m.slug for m in memberships] == ["acme", "beta", "gamma"]
        assert seen == ["0", "2"]

    async def test_empty_list(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"data": [], "total_count": 0}))
        assert await client.list_memberships("user_1") == []
        await client.aclose()

    async def test_error_body_becomes_identity_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"errors": [{"message": "not found", "long_message": "User not found"}]}
            )

        client = _client(handler)
        with pytest.raises(IdentityProviderError) as exc_info:
            await client.list_memberships("user_missing")
        await client.aclose()
        assert exc_info.value.status == 404
        assert str(exc_info.value) == "User not found"

    async def test_transport_failure_becomes_identity_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        with pytest.raises(IdentityProviderError):
            await client.list_memberships("user_1")
        await client.aclose()


@pytest.mark.unit
class TestWrites:
    async def test_set_active_organization_patches_metadata(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"id": "user_1"})

        client = _client(handler)
        await client.set_active_organization("user_1", "org_123")
        await client.aclose()

        request = captured[0]
        assert request.method == "PATCH"
        assert request.url.path == "/v1/users/user_1/metadata"
        assert json.loads(request.content) == {
            "public_metadata": {"active_organization_id": "org_123"}
        }

    async def test_create_user_and_invitation(self) -> None:
        bodies: dict[str, dict[str, object]] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            bodies[request.url.path] = json.loads(request.content)
            if request.url.path.endswith("/users"):
                return httpx.Response(200, json={"id": "user_new"})
            return httpx.Response(200, json={"id": "inv_1"})

        client = _client(handler)
        user_id = await client.create_user("a@b.co", "Ada", "Byron", phone="+15550100")
        invitation_id = await client.create_invitation("a@b.co", "https://acme.example.com/sign-in")
        await client.aclose()

        assert user_id == "user_new"
        assert invitation_id == "inv_1"
        assert bodies["/v1/users"]["phone_number"] == ["+15550100"]
        assert bodies["/v1/invitations"]["redirect_url"] == "https://acme.example.com/sign-in"

    async def test_delete_with_empty_body(self) -> None:
        client = _client(lambda request: httpx.Response(204))
        await client.delete_user("user_new")
        await client.aclose()

    async def test_error_without_json_body(self) -> None:
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(IdentityProviderError, match="Clerk responded with 502"):
            await client.revoke_invitation("inv_1")
        await client.aclose()

"""Membership matching against a resolved organization."""

from __future__ import annotations

from collections.abc import Iterable

from portapro.identity.client import Membership


def find_membership(memberships: Iterable[Membership], clerk_org_id: str) -> Membership | None:
    """Return the membership whose organization id equals *clerk_org_id*."""
    for membership in memberships:
        if membership.org_id == clerk_org_id:
            return membership
    return None


def find_membership_by_slug(memberships: Iterable[Membership], slug: str) -> Membership | None:
    for membership in memberships:
        if membership.slug == slug:
            return membership
    return None


def membership_version(memberships: Iterable[Membership]) -> tuple[str, ...]:
    """A hashable fingerprint of a membership list, used as a memoization key part."""
    return tuple(sorted(m.org_id for m in memberships))

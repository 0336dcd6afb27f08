"""Unit tests for the pure redirect decision table."""

from __future__ import annotations

import pytest

from portapro.identity.client import Membership
from portapro.models.database import Organization
from portapro.tenancy.guard import GuardInputs, GuardOutcome, decide, is_public_route
from portapro.tenancy.hostname import classify_hostname
from portapro.tenancy.lookup import Found, NotFound, TransportError

ROOT = "portaprosoftware.com"
ACME = Membership(org_id="org_123", slug="acme", name="Acme Rentals")
BETA = Membership(org_id="org_456", slug="beta", name="Beta Sanitation")


def _org() -> Organization:
    return Organization(id="row-1", clerk_org_id="org_123", name="Acme Rentals", subdomain="acme")


def _inputs(hostname: str, **overrides: object) -> GuardInputs:
    values: dict[str, object] = {
        "path": "/dashboard",
        "host": classify_hostname(hostname, ROOT),
        "root_domain": ROOT,
        "user_id": "user_1",
        "memberships": (ACME,),
    }
    values.update(overrides)
    return GuardInputs(**values)  # type: ignore[arg-type]


@pytest.mark.unit
class TestPublicRoutes:
    @pytest.mark.parametrize("path", ["/unauthorized", "/auth", "/auth/callback", "/api/health"])
    def test_public_routes_bypass(self, path: str) -> None:
        assert is_public_route(path)
        decision = decide(_inputs("unknown-co." + ROOT, path=path, user_id=None))
        assert decision.outcome is GuardOutcome.PUBLIC_ROUTE_BYPASS
        assert decision.outcome.proceeds

    def test_dashboard_is_not_public(self) -> None:
        assert not is_public_route("/dashboard")


@pytest.mark.unit
class TestLoadingAndAuth:
    def test_waits_for_user(self) -> None:
        decision = decide(_inputs("acme." + ROOT, user_loaded=False))
        assert decision.outcome is GuardOutcome.CHECKING

    def test_waits_for_membership_list(self) -> None:
        decision = decide(_inputs("acme." + ROOT, memberships_loaded=False))
        assert decision.outcome is GuardOutcome.CHECKING

    def test_waits_for_lookup_on_tenant_host(self) -> None:
        decision = decide(_inputs("acme." + ROOT))
        assert decision.outcome is GuardOutcome.CHECKING

    def test_unauthenticated_passes_through(self) -> None:
        decision = decide(_inputs("acme." + ROOT, user_id=None, memberships=()))
        assert decision.outcome is GuardOutcome.UNAUTHENTICATED_PASSTHROUGH
        assert decision.outcome.proceeds


@pytest.mark.unit
class TestMainDomain:
    def test_redirects_to_first_membership_dashboard(self) -> None:
        decision = decide(_inputs(ROOT, memberships=(ACME, BETA)))
        assert decision.outcome is GuardOutcome.REDIRECT_DASHBOARD
        assert decision.location == "https://acme.portaprosoftware.com/dashboard"
        assert decision.full_reload is True
        assert decision.activate is None

    def test_no_memberships_is_unauthorized(self) -> None:
        decision = decide(_inputs(ROOT, memberships=()))
        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED
        assert decision.location == "/unauthorized"
        assert decision.full_reload is False


@pytest.mark.unit
class TestLocalhost:
    def test_org_param_activates_and_goes_to_dashboard(self) -> None:
        decision = decide(_inputs("localhost", memberships=(ACME, BETA), org_param="beta"))
        assert decision.outcome is GuardOutcome.REDIRECT_DASHBOARD
        assert decision.location == "/dashboard"
        assert decision.full_reload is False
        assert decision.activate == "org_456"

    def test_unknown_org_param_is_unauthorized(self) -> None:
        decision = decide(_inputs("localhost", org_param="nope"))
        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED

    def test_without_param_activates_first_membership(self) -> None:
        decision = decide(_inputs("127.0.0.1", memberships=(ACME, BETA)))
        assert decision.outcome is GuardOutcome.ALLOW
        assert decision.activate == "org_123"

    def test_without_param_keeps_current_active_membership(self) -> None:
        decision = decide(_inputs("localhost", memberships=(ACME, BETA), active_org_id="org_456"))
        assert decision.outcome is GuardOutcome.ALLOW
        assert decision.activate == "org_456"

    def test_without_memberships_is_unauthorized(self) -> None:
        decision = decide(_inputs("localhost", memberships=()))
        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED

    def test_dev_subdomain_not_found_is_unauthorized(self) -> None:
        decision = decide(
            _inputs("localhost", dev_subdomain="ghost", lookup=NotFound(subdomain="ghost"))
        )
        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED
        assert decision.location == "/unauthorized"


@pytest.mark.unit
class TestTenantSubdomain:
    def test_not_found_redirects_to_marketing(self) -> None:
        decision = decide(_inputs("unknown-co." + ROOT, lookup=NotFound(subdomain="unknown-co")))
        assert decision.outcome is GuardOutcome.REDIRECT_MARKETING
        assert decision.location == "https://portaprosoftware.com"
        assert decision.full_reload is True
        assert decision.activate is None

    def test_transport_error_is_distinct_from_not_found(self) -> None:
        decision = decide(
            _inputs("acme." + ROOT, lookup=TransportError(subdomain="acme", detail="timeout"))
        )
        assert decision.outcome is GuardOutcome.LOOKUP_UNAVAILABLE
        assert decision.location is None
        assert decision.reason == "timeout"

    def test_found_without_membership_is_unauthorized(self) -> None:
        decision = decide(_inputs("acme." + ROOT, memberships=(BETA,), lookup=Found(_org())))
        assert decision.outcome is GuardOutcome.REDIRECT_UNAUTHORIZED
        assert decision.activate is None

    def test_found_with_membership_is_allowed(self) -> None:
        decision = decide(_inputs("acme." + ROOT, memberships=(BETA, ACME), lookup=Found(_org())))
        assert decision.outcome is GuardOutcome.ALLOW
        assert decision.activate == "org_123"
        assert decision.organization is not None
        assert decision.organization.subdomain == "acme"

"""Hostname classification: localhost, main (marketing) domain, or tenant subdomain."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class HostKind(StrEnum):
    LOCALHOST = "localhost"
    MAIN_DOMAIN = "main_domain"
    TENANT = "tenant"


@dataclass(frozen=True, slots=True)
class HostInfo:
    """A classified hostname. ``subdomain`` is set only for tenant hosts."""

    hostname: str
    kind: HostKind
    subdomain: str | None = None

    @property
    def is_localhost(self) -> bool:
        return self.kind is HostKind.LOCALHOST

    @property
    def is_main_domain(self) -> bool:
        return self.kind is HostKind.MAIN_DOMAIN


def normalize_hostname(hostname: str) -> str:
    """Lowercase, drop a ``:port`` suffix and a trailing dot."""
    host = hostname.strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. "[::1]:8000"
        return host.split("]", 1)[0] + "]"
    host = host.split(":", 1)[0]
    return host.rstrip(".")


def classify_hostname(hostname: str, root_domain: str) -> HostInfo:
    """Classify *hostname* into exactly one :class:`HostKind`.

    ``localhost`` and anything starting with ``127.0.0.1`` is a dev host.
    The root domain, its ``www.`` alias and any host with fewer than three
    labels count as the main domain. Otherwise the first label is the tenant
    subdomain.
    """
    host = normalize_hostname(hostname)
    root = root_domain.strip().lower().rstrip(".")

    if host == "localhost" or host.startswith("127.0.0.1") or host == "[::1]":
        return HostInfo(hostname=host, kind=HostKind.LOCALHOST)

    if host in (root, f"www.{root}"):
        return HostInfo(hostname=host, kind=HostKind.MAIN_DOMAIN)

    parts = host.split(".")
    if len(parts) < 3 or not parts[0]:
        return HostInfo(hostname=host, kind=HostKind.MAIN_DOMAIN)

    return HostInfo(hostname=host, kind=HostKind.TENANT, subdomain=parts[0])


def build_tenant_url(subdomain: str, root_domain: str, path: str = "") -> str:
    """Return the absolute URL of a tenant, e.g. ``https://acme.example.com/dashboard``."""
    return f"https://{subdomain}.{root_domain}{path}"


def marketing_url(root_domain: str) -> str:
    return f"https://{root_domain}"

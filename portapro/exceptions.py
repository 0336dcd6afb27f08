"""Exception hierarchy for PortaPro."""


class PortaProError(Exception):
    """Base exception for all PortaPro errors."""


class ConfigError(PortaProError):
    """Raised when configuration is invalid."""


class IdentityProviderError(PortaProError):
    """Raised when a Clerk API call fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class OrganizationLookupError(PortaProError):
    """Raised when the organizations table cannot be queried."""


class AuthorizationError(PortaProError):
    """Raised when the acting user lacks a required role."""

    def __init__(self, message: str, status: int = 403) -> None:
        super().__init__(message)
        self.status = status


class GuardCancelled(PortaProError):
    """Raised when a tenant check is abandoned because its session ended."""

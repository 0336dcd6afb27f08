"""Clerk session-token verification.

Tokens are checked against the instance's published signing keys, indexed by
``kid``. Keys are refetched hourly, or early when a token names a key we have
not seen, which is how Clerk key rotation shows up.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
import structlog

from portapro.config.settings import get_settings
from portapro.exceptions import ConfigError

logger = structlog.get_logger(__name__)

_KEYS_MAX_AGE = 3600
# An unknown kid refetches at most this often
_UNKNOWN_KID_REFETCH_INTERVAL = 60


@dataclass
class _SigningKeys:
    by_kid: dict[str, jwt.PyJWK] = field(default_factory=dict)
    fetched_at: float | None = None

    def younger_than(self, seconds: float, now: float) -> bool:
        return self.fetched_at is not None and now - self.fetched_at < seconds


_keys = _SigningKeys()


async def _download_keys(jwks_url: str) -> dict[str, jwt.PyJWK]:
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(jwks_url)
        resp.raise_for_status()
    jwk_set = jwt.PyJWKSet.from_dict(resp.json())
    return {key.key_id: key for key in jwk_set.keys if key.key_id}


async def _get_signing_keys(refresh: bool = False) -> dict[str, jwt.PyJWK]:
    """Return signing keys by kid. A failed fetch falls back to the last good set."""
    jwks_url = get_settings().clerk_jwks_url
    if not jwks_url:
        msg = "CLERK_JWKS_URL is not configured"
        raise ConfigError(msg)

    now = time.monotonic()
    max_age = _UNKNOWN_KID_REFETCH_INTERVAL if refresh else _KEYS_MAX_AGE
    if _keys.younger_than(max_age, now):
        return _keys.by_kid

    try:
        by_kid = await _download_keys(jwks_url)
    except (httpx.HTTPError, ValueError, jwt.PyJWKSetError) as exc:
        if not _keys.by_kid:
            raise
        logger.warning("jwks_fetch_failed_using_previous", error=str(exc))
        return _keys.by_kid

    _keys.by_kid = by_kid
    _keys.fetched_at = now
    logger.debug("jwks_fetched", key_ids=sorted(by_kid))
    return by_kid


@dataclass(frozen=True, slots=True)
class ClerkClaims:
    """The session-token claims the tenant guard works from."""

    sub: str  # Clerk user ID
    sid: str  # Clerk session ID
    org_id: str | None  # active organization when the session started
    email: str = ""


def claims_from_payload(payload: dict[str, Any]) -> ClerkClaims:
    sub = payload["sub"]
    return ClerkClaims(
        sub=sub,
        # Tokens minted without a session, such as testing tokens, get one session per user
        sid=payload.get("sid") or f"user:{sub}",
        org_id=payload.get("org_id"),
        email=payload.get("email", ""),
    )


async def verify_clerk_token(token: str) -> ClerkClaims:
    """Verify a Clerk session token and return its claims.

    Raises jwt.PyJWTError when the token is malformed, expired, signed by an
    unknown key or issued by another instance.
    """
    kid = jwt.get_unverified_header(token).get("kid")
    keys = await _get_signing_keys()
    if kid not in keys:
        keys = await _get_signing_keys(refresh=True)
    if kid not in keys:
        msg = f"unknown signing key {kid!r}"
        raise jwt.InvalidTokenError(msg)

    payload: dict[str, Any] = jwt.decode(
        token,
        keys[kid].key,
        algorithms=["RS256"],
        issuer=get_settings().clerk_issuer,
        options={"verify_aud": False, "require": ["exp", "sub"]},
    )
    return claims_from_payload(payload)

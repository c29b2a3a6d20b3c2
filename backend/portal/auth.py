"""
Bearer token verification for Auth0-issued access tokens.

Only RS256 tokens are accepted. Signing keys come from the tenant's JWKS
endpoint (https://<AUTH0_DOMAIN>/.well-known/jwks.json) and are cached in a
JwksCache instance for an hour; an unknown ``kid`` forces one refresh so key
rotation does not lock users out.

Environment variables
---------------------
AUTH0_DOMAIN     Auth0 tenant domain (required for protected endpoints).
AUTH0_AUDIENCE   Expected audience; defaults to https://<domain>/api/v2/.
"""

import logging
import re
import threading
import time
from typing import Any, Callable, Optional

import httpx
from fastapi import Depends, Header, HTTPException
from fastapi.concurrency import run_in_threadpool
from jose import ExpiredSignatureError, JWTError, jwt

from portal.config import TenantContext, get_tenant_context, resolve_tenant_env

logger = logging.getLogger(__name__)

CLOCK_TOLERANCE_SECONDS = 60
JWKS_CACHE_TTL_SECONDS = 60 * 60
MANAGEMENT_AUDIENCE_SUFFIX = "/api/v2/"

Jwk = dict[str, Any]


class TokenVerificationError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# JWKS cache
# ---------------------------------------------------------------------------

def fetch_jwks(domain: str) -> list[Jwk]:
    """Download the signing keys published by the Auth0 tenant."""
    url = f"https://{domain}/.well-known/jwks.json"
    try:
        response = httpx.get(url, timeout=10.0)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Could not fetch JWKS from %s: %s", url, exc)
        raise TokenVerificationError(
            "Could not retrieve the identity provider signing keys", 500
        ) from exc

    keys = data.get("keys") if isinstance(data, dict) else None
    if not isinstance(keys, list):
        raise TokenVerificationError("Identity provider returned no signing keys", 500)
    return keys


class JwksCache:
    """
    Signing keys per Auth0 domain, each with its own expiry.

    Tenants with their own ``AUTH0_DOMAIN__<TENANT>`` keep separate entries.
    ``fetcher`` and ``clock`` are injectable so tests never touch the network
    or depend on wall time.
    """

    def __init__(
        self,
        fetcher: Callable[[str], list[Jwk]] = fetch_jwks,
        ttl_seconds: float = JWKS_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[list[Jwk], float]] = {}
        self._lock = threading.Lock()

    def _fresh_keys(self, domain: str) -> Optional[list[Jwk]]:
        with self._lock:
            entry = self._entries.get(domain)
        if entry is None or self._clock() >= entry[1]:
            return None
        return entry[0]

    def is_fresh(self, domain: str) -> bool:
        return self._fresh_keys(domain) is not None

    def get_keys(self, domain: str, force_refresh: bool = False) -> list[Jwk]:
        if not force_refresh:
            keys = self._fresh_keys(domain)
            if keys is not None:
                return keys

        # The fetch runs without the lock held.
        keys = self._fetcher(domain)
        with self._lock:
            self._entries[domain] = (keys, self._clock() + self._ttl)
        return keys

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_jwks_cache = JwksCache()


def get_jwks_cache() -> JwksCache:
    return _jwks_cache


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def _select_signing_key(kid: str, domain: str, cache: JwksCache) -> Jwk:
    for force_refresh in (False, True):
        for key in cache.get_keys(domain, force_refresh=force_refresh):
            if key.get("kid") == kid:
                return key
    raise TokenVerificationError("The key used to sign the token is no longer available")


def verify_access_token(
    token: str,
    domain: str,
    audiences: list[str],
    cache: JwksCache,
) -> dict[str, Any]:
    """
    Verify signature and standard claims of an Auth0 access token.

    Returns the token claims.

    Raises:
        TokenVerificationError: 401 for invalid/expired tokens, 403 when the
            audience does not match, 500 when keys cannot be fetched.
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise TokenVerificationError("Malformed token") from exc

    if header.get("alg") != "RS256":
        raise TokenVerificationError("Only RS256 signed tokens are accepted")

    kid = header.get("kid")
    if not kid:
        raise TokenVerificationError("Token header has no key id (kid)")

    signing_key = _select_signing_key(kid, domain, cache)

    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            options={
                "verify_aud": False,  # checked below against several audiences
                "verify_iss": False,  # Auth0 issuers may or may not end with "/"
                "leeway": CLOCK_TOLERANCE_SECONDS,
            },
        )
    except ExpiredSignatureError:
        raise TokenVerificationError("Token expired")
    except JWTError:
        raise TokenVerificationError("Invalid token")

    issuer = claims.get("iss")
    if issuer not in {f"https://{domain}/", f"https://{domain}"}:
        raise TokenVerificationError("Token was not issued by the configured identity provider")

    token_audiences = claims.get("aud") or []
    if isinstance(token_audiences, str):
        token_audiences = [token_audiences]
    if not any(audience in audiences for audience in token_audiences):
        raise TokenVerificationError("Token audience is not valid for this API", 403)

    return claims


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise TokenVerificationError("Not authenticated")

    match = re.match(r"^Bearer\s+(.+)$", authorization, re.IGNORECASE)
    token = match.group(1).strip() if match else ""
    if not token:
        raise TokenVerificationError("Invalid authentication credentials")
    return token


async def get_current_user(
    authorization: Optional[str] = Header(None),
    tenant: Optional[TenantContext] = Depends(get_tenant_context),
    cache: JwksCache = Depends(get_jwks_cache),
) -> str:
    """
    FastAPI dependency: verify the Authorization header and return the
    caller's ``sub`` claim.

    Raises:
        HTTPException: 401/403 for bad tokens, 500 when Auth0 is not configured.
    """
    domain = resolve_tenant_env("AUTH0_DOMAIN", tenant)
    if not domain:
        logger.error("AUTH0_DOMAIN is not configured; rejecting authenticated request")
        raise HTTPException(status_code=500, detail="Server authentication is not configured")

    audience = resolve_tenant_env("AUTH0_AUDIENCE", tenant) or f"https://{domain}{MANAGEMENT_AUDIENCE_SUFFIX}"

    try:
        token = extract_bearer_token(authorization)
        claims = await run_in_threadpool(verify_access_token, token, domain, [audience], cache)
    except TokenVerificationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))

    user_id: Optional[str] = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id

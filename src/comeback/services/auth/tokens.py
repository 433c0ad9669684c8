"""Local verification of Supabase access tokens against the project's JWKS."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import httpx
from jose import JWTError, jwk, jwt
from jose.backends.base import Key

from src.comeback.services.auth.models import AuthenticatedIdentity, parse_identity

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ["RS256", "ES256"]


class JWKSCache:
    """
    In-memory cache of the Supabase JWKS, refreshed on expiry or unknown kid.

    Concurrent refreshes are coalesced: while one fetch is in flight, other
    callers wait for it instead of issuing their own request.

    Attributes:
        jwks_url: URL of /auth/v1/.well-known/jwks.json
        cache_ttl: Seconds before keys are considered stale
    """

    def __init__(self, jwks_url: str, cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.cache_ttl = cache_ttl
        self._keys: dict[str, Key] = {}
        self._last_refresh: datetime | None = None
        self._refresh_count = 0
        self._refresh_lock = asyncio.Lock()
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=30.0, connect=10.0, write=10.0)
        )

    async def get_signing_key(self, kid: str) -> Key:
        """
        Get signing key by key ID, refreshing once on a miss (key rotation).

        Raises:
            ValueError: If key ID not found after refresh
            httpx.HTTPError: If JWKS fetch fails
        """
        if self._needs_refresh():
            await self.refresh_keys()

        key = self._keys.get(kid)
        if key is None:
            logger.warning(
                f"Key ID '{kid}' not found in cache, refreshing JWKS",
                extra={"kid": kid, "cached_kids": list(self._keys)},
            )
            await self.refresh_keys(force=True)
            key = self._keys.get(kid)

        if key is None:
            raise ValueError(f"Key ID '{kid}' not found in JWKS")
        return key

    async def refresh_keys(self, force: bool = False) -> None:
        """
        Fetch the JWKS and replace the cached keys.

        Args:
            force: Refetch even if the cached keys have not expired

        Raises:
            httpx.HTTPError: If HTTP request fails
        """
        seen = self._refresh_count
        async with self._refresh_lock:
            # someone else refreshed while we waited for the lock
            if self._refresh_count != seen:
                return
            if not force and not self._needs_refresh():
                return

            try:
                response = await self._http_client.get(self.jwks_url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(
                    f"Failed to fetch JWKS from {self.jwks_url}: {e}",
                    exc_info=True,
                    extra={"error_type": "jwks_fetch_failed"},
                )
                raise

            self._keys = self._parse_keys(response.json().get("keys", []))
            self._last_refresh = datetime.now(UTC)
            self._refresh_count += 1
            logger.info(
                "JWKS cache refreshed",
                extra={"key_count": len(self._keys), "key_ids": list(self._keys)},
            )

    @staticmethod
    def _parse_keys(keys_list: list[dict[str, Any]]) -> dict[str, Key]:
        keys: dict[str, Key] = {}
        for key_data in keys_list:
            kid = key_data.get("kid")
            if not kid:
                logger.warning("JWKS key missing 'kid', skipping")
                continue
            kty = key_data.get("kty")
            algorithm = {"EC": "ES256", "RSA": "RS256"}.get(kty, key_data.get("alg", "RS256"))
            try:
                keys[kid] = jwk.construct(key_data, algorithm=algorithm)
            except Exception as e:
                logger.warning(f"Skipping unparseable JWKS key {kid}: {e}")
        return keys

    def _needs_refresh(self) -> bool:
        if self._last_refresh is None:
            return True
        age = (datetime.now(UTC) - self._last_refresh).total_seconds()
        return age >= self.cache_ttl

    async def close(self) -> None:
        await self._http_client.aclose()
        logger.info("JWKS cache closed")


class TokenVerifier:
    """
    Turns a Supabase access token into an identity handle without a network call.

    Example:
        >>> verifier = TokenVerifier(cache, issuer="https://project.supabase.co/auth/v1")
        >>> identity = await verifier.verify("eyJ...")
        >>> identity.id
        '123e4567-e89b-12d3-a456-426614174000'
    """

    def __init__(
        self,
        jwks_cache: JWKSCache,
        issuer: str,
        audience: str = "authenticated",
        leeway: int = 10,
    ):
        self.jwks_cache = jwks_cache
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway

    async def verify_claims(self, token: str) -> dict[str, Any]:
        """
        Verify signature, expiry, issuer and audience; return the claims.

        Raises:
            JWTError: If the token is invalid for any reason
        """
        try:
            kid = jwt.get_unverified_header(token).get("kid")
            if not kid:
                raise JWTError("JWT header missing 'kid' (key ID)")

            signing_key = await self.jwks_cache.get_signing_key(kid)
            return jwt.decode(
                token,
                signing_key,
                algorithms=SUPPORTED_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "leeway": self.leeway},
            )
        except JWTError as e:
            logger.warning(f"JWT verification failed: {e}", extra={"error": str(e)})
            raise
        except Exception as e:
            logger.error(f"Unexpected error during JWT verification: {e}", exc_info=True)
            raise JWTError(f"JWT verification error: {e}") from e

    async def verify(self, token: str) -> AuthenticatedIdentity:
        """
        Verify a token and build the identity it belongs to.

        Raises:
            JWTError: If the token is invalid or carries no 'sub' claim
        """
        identity = parse_identity(await self.verify_claims(token))
        if not isinstance(identity, AuthenticatedIdentity):
            raise JWTError("Token has no 'sub' claim")
        return identity

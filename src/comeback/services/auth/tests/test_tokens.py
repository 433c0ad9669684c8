"""Tests for the JWKS cache and the token verifier."""

import asyncio
import time
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import JWTError, jwk, jwt

from src.comeback.services.auth.models import AuthenticatedIdentity
from src.comeback.services.auth.tokens import JWKSCache, TokenVerifier

ISSUER = "https://test.supabase.co/auth/v1"
JWKS_URL = f"{ISSUER}/.well-known/jwks.json"


@pytest.fixture(scope="module")
def private_pem() -> bytes:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="module")
def jwks_payload(private_pem: bytes) -> dict:
    public = jwk.construct(private_pem, algorithm="RS256").public_key().to_dict()
    return {"keys": [{**public, "kid": "key-1", "use": "sig"}]}


@pytest.fixture
def make_token(private_pem: bytes):
    def _make(kid: str = "key-1", **overrides) -> str:
        claims = {
            "sub": "u1",
            "email": "a@x.com",
            "aud": "authenticated",
            "iss": ISSUER,
            "exp": int(time.time()) + 3600,
            "user_metadata": {"full_name": "Jane Doe"},
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": kid})

    return _make


@pytest.fixture
def cache(jwks_payload: dict) -> JWKSCache:
    cache = JWKSCache(JWKS_URL, cache_ttl=3600)
    response = Mock()
    response.json.return_value = jwks_payload
    response.raise_for_status = Mock()
    cache._http_client.get = AsyncMock(return_value=response)
    return cache


@pytest.mark.asyncio
class TestJWKSCache:
    """Tests for JWKSCache."""

    async def test_initialization(self):
        cache = JWKSCache(JWKS_URL, cache_ttl=60)

        assert cache.jwks_url == JWKS_URL
        assert cache.cache_ttl == 60
        assert cache._keys == {}
        assert cache._last_refresh is None

    async def test_refresh_keys(self, cache):
        await cache.refresh_keys()

        assert list(cache._keys) == ["key-1"]
        assert cache._last_refresh is not None

    async def test_fresh_cache_is_not_refetched(self, cache):
        await cache.refresh_keys()
        await cache.refresh_keys()

        cache._http_client.get.assert_awaited_once()

    async def test_concurrent_refreshes_are_coalesced(self, cache):
        await asyncio.gather(*(cache.get_signing_key("key-1") for _ in range(5)))

        cache._http_client.get.assert_awaited_once()

    async def test_unknown_kid_forces_one_refresh(self, cache):
        await cache.refresh_keys()

        with pytest.raises(ValueError):
            await cache.get_signing_key("rotated-key")

        assert cache._http_client.get.await_count == 2

    async def test_http_error_propagates(self):
        cache = JWKSCache(JWKS_URL)
        cache._http_client.get = AsyncMock(side_effect=httpx.HTTPError("Connection failed"))

        with pytest.raises(httpx.HTTPError):
            await cache.refresh_keys()

    async def test_keys_without_kid_or_unparseable_are_skipped(self, cache, jwks_payload):
        payload = {
            "keys": [
                {"kty": "RSA", "n": "abc", "e": "AQAB"},
                {"kid": "broken", "kty": "oct-unknown"},
                *jwks_payload["keys"],
            ]
        }
        cache._http_client.get.return_value.json.return_value = payload

        await cache.refresh_keys()

        assert list(cache._keys) == ["key-1"]

    async def test_close(self, cache):
        cache._http_client.aclose = AsyncMock()
        await cache.close()
        cache._http_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
class TestTokenVerifier:
    """Tests for TokenVerifier against a real signed token."""

    async def test_verify_returns_identity(self, cache, make_token):
        verifier = TokenVerifier(cache, issuer=ISSUER)

        identity = await verifier.verify(make_token())

        assert isinstance(identity, AuthenticatedIdentity)
        assert identity.id == "u1"
        assert identity.email == "a@x.com"
        assert identity.user_metadata.display_name == "Jane Doe"

    async def test_expired_token_rejected(self, cache, make_token):
        verifier = TokenVerifier(cache, issuer=ISSUER, leeway=0)

        with pytest.raises(JWTError):
            await verifier.verify(make_token(exp=int(time.time()) - 60))

    async def test_wrong_issuer_rejected(self, cache, make_token):
        verifier = TokenVerifier(cache, issuer=ISSUER)

        with pytest.raises(JWTError):
            await verifier.verify(make_token(iss="https://evil.example.com/auth/v1"))

    async def test_wrong_audience_rejected(self, cache, make_token):
        verifier = TokenVerifier(cache, issuer=ISSUER)

        with pytest.raises(JWTError):
            await verifier.verify(make_token(aud="anon"))

    async def test_missing_sub_rejected(self, cache, make_token):
        verifier = TokenVerifier(cache, issuer=ISSUER)

        with pytest.raises(JWTError):
            await verifier.verify(make_token(sub=None))

    async def test_unknown_kid_rejected(self, cache, make_token):
        verifier = TokenVerifier(cache, issuer=ISSUER)

        with pytest.raises(JWTError):
            await verifier.verify(make_token(kid="other-key"))

    async def test_garbage_rejected(self, cache):
        verifier = TokenVerifier(cache, issuer=ISSUER)

        with pytest.raises(JWTError):
            await verifier.verify("not-a-jwt")

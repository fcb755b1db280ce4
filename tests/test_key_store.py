"""
Tests for KeyStore key resolution, rotation and throttling.
"""

import asyncio

import httpx
import pytest
from conftest import ISSUER, FakeIdP, public_jwk, public_pem

import oidc_grants as m
from oidc_grants import refresh_gate


class CountingSource:
    """JwksSource stub that yields to the loop before answering."""

    def __init__(self, keys):
        self.keys = keys
        self.calls = 0

    async def fetch_keys(self, issuer: str):
        self.calls += 1
        await asyncio.sleep(0.01)
        return self.keys


class FailingSource:
    async def fetch_keys(self, issuer: str):
        raise m.HttpError(503, "unavailable", "Service Unavailable")


def test_jwk_to_pem_matches_public_key(rsa_key):
    assert m.jwk_to_pem(public_jwk(rsa_key, "k1")) == public_pem(rsa_key)


@pytest.mark.parametrize(
    "jwk",
    [
        {"kty": "oct", "kid": "h", "k": "c2VjcmV0"},
        {"kty": "RSA", "kid": "broken", "n": "AQAB"},
        {"kid": "none"},
    ],
)
def test_jwk_to_pem_rejects_unusable_keys(jwk):
    with pytest.raises(m.KeyNotFound):
        m.jwk_to_pem(jwk)


@pytest.mark.asyncio
async def test_get_key_fetches_once_then_serves_from_cache(rsa_key):
    source = CountingSource([public_jwk(rsa_key, "k1")])
    store = m.KeyStore(source)

    assert await store.get_key(ISSUER, "k1") == public_pem(rsa_key)
    assert await store.get_key(ISSUER, "k1") == public_pem(rsa_key)
    assert source.calls == 1

    entry = store.entry(ISSUER)
    assert entry is not None
    assert set(entry.pem_by_kid) == {"k1"}
    assert entry.last_fetch_time > 0


@pytest.mark.asyncio
async def test_concurrent_misses_trigger_exactly_one_fetch(rsa_key):
    source = CountingSource([public_jwk(rsa_key, "k1")])
    store = m.KeyStore(source)

    results = await asyncio.gather(*(store.get_key(ISSUER, "k1") for _ in range(20)))

    assert source.calls == 1
    assert set(results) == {public_pem(rsa_key)}


@pytest.mark.asyncio
async def test_unknown_kid_after_refresh_raises_key_not_found(rsa_key):
    store = m.KeyStore(CountingSource([public_jwk(rsa_key, "k1")]))

    with pytest.raises(m.KeyNotFound, match="kid=k9"):
        await store.get_key(ISSUER, "k9")


@pytest.mark.asyncio
async def test_rotation_refetches_after_interval(
    rsa_key, other_rsa_key, monkeypatch: pytest.MonkeyPatch
):
    time_val = [1000.0]
    monkeypatch.setattr(refresh_gate.time, "time", lambda: time_val[0])

    source = CountingSource([public_jwk(rsa_key, "k1")])
    store = m.KeyStore(source, min_interval=10)
    await store.get_key(ISSUER, "k1")

    # The IdP rotates to k2 and drops k1.
    source.keys = [public_jwk(other_rsa_key, "k2")]

    time_val[0] = 1005.0
    with pytest.raises(m.KeyNotFound, match="throttled"):
        await store.get_key(ISSUER, "k2")
    assert source.calls == 1

    time_val[0] = 1011.0
    assert await store.get_key(ISSUER, "k2") == public_pem(other_rsa_key)
    assert source.calls == 2

    # The entry is replaced wholesale.
    assert "k1" not in store.entry(ISSUER).pem_by_kid


@pytest.mark.asyncio
async def test_encryption_and_kidless_keys_are_skipped(rsa_key, other_rsa_key):
    keys = [
        public_jwk(rsa_key, "sig"),
        public_jwk(other_rsa_key, "enc", use="enc"),
        {k: v for k, v in public_jwk(other_rsa_key, "x").items() if k != "kid"},
    ]
    store = m.KeyStore(CountingSource(keys))

    await store.get_key(ISSUER, "sig")
    assert set(store.entry(ISSUER).pem_by_kid) == {"sig"}


@pytest.mark.asyncio
async def test_fetch_failure_is_reported_as_key_fetch_failed():
    store = m.KeyStore(FailingSource())

    with pytest.raises(m.KeyFetchFailed):
        await store.get_key(ISSUER, "k1")


@pytest.mark.asyncio
async def test_clear_cache_forces_refetch(rsa_key):
    source = CountingSource([public_jwk(rsa_key, "k1")])
    store = m.KeyStore(source, min_interval=60)

    await store.get_key(ISSUER, "k1")
    store.clear_cache()
    assert store.entry(ISSUER) is None

    await store.get_key(ISSUER, "k1")
    assert source.calls == 2


@pytest.mark.asyncio
async def test_realm_certs_source_reads_certs_endpoint(idp: FakeIdP, http: httpx.AsyncClient):
    keys = await m.RealmCertsSource(http).fetch_keys(ISSUER)

    assert [k["kid"] for k in keys] == ["k1"]
    assert idp.certs_calls == 1
    assert str(idp.requests[0].url) == f"{ISSUER}/protocol/openid-connect/certs"


@pytest.mark.asyncio
async def test_realm_certs_source_http_error(idp: FakeIdP, http: httpx.AsyncClient):
    idp.certs_status = 500

    with pytest.raises(m.KeyFetchFailed, match="Error fetching JWK Keys"):
        await m.RealmCertsSource(http).fetch_keys(ISSUER)

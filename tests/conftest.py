import json
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from flask import Flask
from jwt.algorithms import RSAAlgorithm

import oidc_grants as m

AUTH_SERVER = "https://idp.test"
REALM = "acme"
ISSUER = f"{AUTH_SERVER}/realms/{REALM}"
CLIENT_ID = "shop"
SECRET = "s3cr3t"


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


def _new_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return _new_rsa_key()


@pytest.fixture(scope="session")
def other_rsa_key() -> rsa.RSAPrivateKey:
    """A second key pair, e.g. the one published after a rotation."""
    return _new_rsa_key()


def public_pem(key: rsa.RSAPrivateKey) -> str:
    return (
        key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode("ascii")
    )


def public_jwk(key: rsa.RSAPrivateKey, kid: str, **extra: Any) -> dict[str, Any]:
    jwk = json.loads(RSAAlgorithm.to_jwk(key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"}, **extra)
    return jwk


@pytest.fixture
def make_token(rsa_key: rsa.RSAPrivateKey):
    """
    Factory fixture that returns a function signing RS256 tokens for ISSUER.

    Usage in tests:
        raw = make_token(typ="ID", exp_in=-10)
    """

    def _make(
        *,
        kid: str | None = "k1",
        key: rsa.RSAPrivateKey | None = None,
        typ: str = "Bearer",
        exp_in: int | None = 300,
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "azp": CLIENT_ID,
            "sub": "user-1",
            "typ": typ,
            "iat": now,
        }
        if exp_in is not None:
            payload["exp"] = now + exp_in
        payload.update(claims)

        headers = {"kid": kid} if kid is not None else None
        return jwt.encode(payload, key or rsa_key, algorithm="RS256", headers=headers)

    return _make


@pytest.fixture
def make_grant_json(make_token: Callable[..., str]):
    """Factory for token endpoint responses."""

    def _make(**overrides: Any) -> dict[str, Any]:
        body: dict[str, Any] = {
            "access_token": make_token(),
            "refresh_token": make_token(typ="Refresh", exp_in=1800),
            "id_token": make_token(typ="ID"),
            "token_type": "Bearer",
            "expires_in": 300,
        }
        body.update(overrides)
        return body

    return _make


class FakeIdP:
    """
    In-process identity provider behind httpx.MockTransport.

    Serves the realm certs, token, introspection, userinfo and discovery
    endpoints, and records every request it receives.
    """

    def __init__(self, keys: list[dict[str, Any]]):
        self.keys = keys
        self.certs_calls = 0
        self.certs_status = 200
        self.token_response: dict[str, Any] | Callable[[httpx.Request], httpx.Response] = {}
        self.introspection: dict[str, Any] = {"active": True}
        self.userinfo: dict[str, Any] = {"sub": "user-1", "email": "alice@example.com"}
        self.requests: list[httpx.Request] = []

    def form(self, index: int = -1) -> dict[str, list[str]]:
        return parse_qs(self.requests[index].content.decode("utf-8"))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url.endswith("/protocol/openid-connect/certs"):
            self.certs_calls += 1
            if self.certs_status != 200:
                return httpx.Response(self.certs_status, text="unavailable")
            return httpx.Response(200, json={"keys": self.keys})

        if url.endswith("/.well-known/openid-configuration"):
            issuer = url.removesuffix("/.well-known/openid-configuration")
            return httpx.Response(
                200,
                json={
                    "issuer": issuer,
                    "token_endpoint": f"{issuer}/protocol/openid-connect/token",
                    "authorization_endpoint": f"{issuer}/protocol/openid-connect/auth",
                    "userinfo_endpoint": f"{issuer}/protocol/openid-connect/userinfo",
                    "jwks_uri": f"{issuer}/protocol/openid-connect/certs",
                },
            )

        if url.endswith("/protocol/openid-connect/token/introspect"):
            return httpx.Response(200, json=self.introspection)

        if url.endswith("/protocol/openid-connect/token"):
            if callable(self.token_response):
                return self.token_response(request)
            return httpx.Response(200, json=self.token_response)

        if url.endswith("/protocol/openid-connect/userinfo"):
            return httpx.Response(200, json=self.userinfo)

        return httpx.Response(404, text="not found")


@pytest.fixture
def idp(rsa_key: rsa.RSAPrivateKey) -> FakeIdP:
    return FakeIdP(keys=[public_jwk(rsa_key, "k1")])


@pytest.fixture
def http(idp: FakeIdP) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(idp.handle))


@pytest.fixture
def config() -> m.AdapterConfig:
    return m.AdapterConfig(
        auth_server_url=AUTH_SERVER,
        realm=REALM,
        client_id=CLIENT_ID,
        secret=SECRET,
    )


@pytest.fixture
def manager(config: m.AdapterConfig, http: httpx.AsyncClient) -> m.GrantManager:
    return m.GrantManager(config, http=http)


class FakeRedis:
    """
    Minimal redis stub for RedisGrantStore tests.
    Stores bytes under keys and supports setex and delete.
    """

    def __init__(self):
        self._store: dict[str, tuple[bytes, int]] = {}

    def get(self, key: str):
        item = self._store.get(key)
        if item is None:
            return None
        data, expires_at = item
        if int(time.time()) >= expires_at:
            self._store.pop(key, None)
            return None
        return data

    def setex(self, key: str, ttl_seconds: int, value: str | bytes):
        expires_at = int(time.time()) + int(ttl_seconds)
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._store[key] = (value, expires_at)

    def delete(self, key: str):
        self._store.pop(key, None)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()

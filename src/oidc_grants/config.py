"""Adapter configuration.

``AdapterConfig`` can be built directly, from a ``keycloak.json``-style
mapping, or from ``OIDC_*`` environment variables (a ``.env`` file is loaded
with python-dotenv first).
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

_PEM_HEADER = "-----BEGIN PUBLIC KEY-----"
_PEM_FOOTER = "-----END PUBLIC KEY-----"


def format_public_key(plain_key: str) -> str:
    """Wrap a bare base64 public key into PEM (64-column lines).

    Keys that already carry a PEM header are returned unchanged.
    """
    if _PEM_HEADER in plain_key:
        return plain_key

    lines = [plain_key[i : i + 64] for i in range(0, len(plain_key), 64)]
    return "\n".join([_PEM_HEADER, *lines, _PEM_FOOTER]) + "\n"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _first(config: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if config.get(name) is not None:
            return config[name]
    return None


@dataclass(frozen=True, slots=True)
class AdapterConfig:
    """Configuration for a GrantManager.

    Attributes:
        auth_server_url: Base URL of the IdP (trailing slashes are stripped).
        realm: Realm name. Default: "master".
        client_id: Client the adapter authenticates as.
        secret: Client secret (confidential clients).
        public: Public client; never sends a secret.
        bearer_only: Only validates bearer tokens; never refreshes and never
            validates ID tokens.
        realm_public_key: Static PEM key. When set, signatures are verified
            against it and the JWKS endpoint is never contacted.
        verify_token_audience: Enforce ``aud`` for non-ID tokens.
        min_time_between_jwks_requests: Seconds between forced JWKS refreshes.
        algorithms: Allowed signing algorithms.
        http_timeout: Per-request timeout in seconds for IdP calls.
    """

    auth_server_url: str
    realm: str = "master"
    client_id: str | None = None
    secret: str | None = None
    public: bool = False
    bearer_only: bool = False
    realm_public_key: str | None = None
    verify_token_audience: bool = False
    min_time_between_jwks_requests: float = 10
    algorithms: tuple[str, ...] = ("RS256",)
    http_timeout: float = 10.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "auth_server_url", self.auth_server_url.rstrip("/"))
        if self.realm_public_key:
            object.__setattr__(self, "realm_public_key", format_public_key(self.realm_public_key))

    @property
    def realm_url(self) -> str:
        return f"{self.auth_server_url}/realms/{self.realm}"

    @property
    def realm_admin_url(self) -> str:
        return f"{self.auth_server_url}/admin/realms/{self.realm}"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> AdapterConfig:
        """Build from a ``keycloak.json``-style mapping.

        Both hyphenated (``auth-server-url``) and camelCase (``authServerUrl``)
        keys are accepted; ``resource`` is the client id and
        ``credentials.secret`` the secret.
        """
        auth_server_url = _first(config, "auth-server-url", "server-url", "serverUrl", "authServerUrl")
        if not auth_server_url:
            raise ValueError("auth-server-url is required")

        credentials = config.get("credentials") or {}
        min_interval = _first(config, "min-time-between-jwks-requests", "minTimeBetweenJwksRequests")

        return cls(
            auth_server_url=auth_server_url,
            realm=config.get("realm") or "master",
            client_id=_first(config, "resource", "client-id", "clientId"),
            secret=credentials.get("secret") or config.get("secret"),
            public=_as_bool(_first(config, "public-client", "public") or False),
            bearer_only=_as_bool(_first(config, "bearer-only", "bearerOnly") or False),
            realm_public_key=_first(config, "realm-public-key", "realmPublicKey"),
            verify_token_audience=_as_bool(
                _first(config, "verify-token-audience", "verifyTokenAudience") or False
            ),
            min_time_between_jwks_requests=10 if min_interval is None else float(min_interval),
        )

    @classmethod
    def from_file(cls, path: str | Path = "keycloak.json") -> AdapterConfig:
        return cls.from_mapping(json.loads(Path(path).read_text(encoding="utf-8")))

    @classmethod
    def from_env(cls, prefix: str = "OIDC_") -> AdapterConfig:
        """Build from environment variables such as ``OIDC_AUTH_SERVER_URL``.

        Recognized suffixes: AUTH_SERVER_URL, REALM, CLIENT_ID, CLIENT_SECRET,
        PUBLIC_CLIENT, BEARER_ONLY, REALM_PUBLIC_KEY, VERIFY_TOKEN_AUDIENCE,
        MIN_TIME_BETWEEN_JWKS_REQUESTS, HTTP_TIMEOUT.
        """
        load_dotenv()

        def env(name: str) -> str | None:
            return os.environ.get(prefix + name) or None

        auth_server_url = env("AUTH_SERVER_URL")
        if not auth_server_url:
            raise ValueError(f"Missing required environment variable {prefix}AUTH_SERVER_URL")

        min_interval = env("MIN_TIME_BETWEEN_JWKS_REQUESTS")
        timeout = env("HTTP_TIMEOUT")

        return cls(
            auth_server_url=auth_server_url,
            realm=env("REALM") or "master",
            client_id=env("CLIENT_ID"),
            secret=env("CLIENT_SECRET"),
            public=_as_bool(env("PUBLIC_CLIENT") or False),
            bearer_only=_as_bool(env("BEARER_ONLY") or False),
            realm_public_key=env("REALM_PUBLIC_KEY"),
            verify_token_audience=_as_bool(env("VERIFY_TOKEN_AUDIENCE") or False),
            min_time_between_jwks_requests=10 if min_interval is None else float(min_interval),
            http_timeout=10.0 if timeout is None else float(timeout),
        )

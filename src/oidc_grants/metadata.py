"""OpenID Connect discovery client.

Loads ``{authority}/.well-known/openid-configuration`` (or an explicit
``metadata_url``) once, caches it, and exposes the endpoints the adapter needs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .errors import HttpError, KeyFetchFailed, MetadataError
from .protocols import Jwk

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


async def get_json(http: httpx.AsyncClient, url: str, **kwargs: Any) -> Any:
    """GET ``url`` and decode JSON.

    Raises:
        HttpError: Non-2xx response (status and raw body attached).
        httpx.HTTPError: Transport failure.
        ValueError: Body is not JSON.
    """
    response = await http.get(url, headers={"Accept": "application/json"}, **kwargs)
    if not response.is_success:
        raise HttpError(response.status_code, response.text, response.reason_phrase)
    return response.json()


class MetadataService:
    """Cached access to an issuer's discovery document.

    Args:
        http: Shared async HTTP client.
        authority: Issuer URL; the discovery URL is derived from it.
        metadata_url: Explicit discovery URL, takes precedence over authority.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        authority: str | None = None,
        metadata_url: str | None = None,
    ) -> None:
        if not metadata_url and not authority:
            raise ValueError("Either authority or metadata_url is required")

        self._http = http
        self.metadata_url = metadata_url or authority.rstrip("/") + WELL_KNOWN_PATH
        self._metadata: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    async def get_metadata(self) -> dict[str, Any]:
        if self._metadata is not None:
            return self._metadata

        async with self._lock:
            if self._metadata is None:
                logger.debug("Loading OIDC discovery document from %s", self.metadata_url)
                try:
                    metadata = await get_json(self._http, self.metadata_url)
                except (HttpError, httpx.HTTPError, ValueError) as e:
                    raise MetadataError(f"Failed to load metadata from {self.metadata_url}") from e
                if not isinstance(metadata, dict):
                    raise MetadataError(f"Invalid metadata document at {self.metadata_url}")
                self._metadata = metadata
        return self._metadata

    def reset(self) -> None:
        self._metadata = None

    async def _endpoint(self, name: str) -> str:
        value = (await self.get_metadata()).get(name)
        if not value:
            raise MetadataError(f"Metadata at {self.metadata_url} does not define {name}")
        return value

    async def get_issuer(self) -> str:
        return await self._endpoint("issuer")

    async def get_token_endpoint(self) -> str:
        return await self._endpoint("token_endpoint")

    async def get_authorization_endpoint(self) -> str:
        return await self._endpoint("authorization_endpoint")

    async def get_userinfo_endpoint(self) -> str:
        return await self._endpoint("userinfo_endpoint")

    async def get_introspection_endpoint(self) -> str:
        return await self._endpoint("introspection_endpoint")

    async def get_jwks_uri(self) -> str:
        return await self._endpoint("jwks_uri")

    async def get_signing_keys(self) -> list[Jwk]:
        """Fetch the current key set from ``jwks_uri`` (not cached here).

        Raises:
            KeyFetchFailed: The JWKS endpoint failed or answered badly.
        """
        jwks_uri = await self.get_jwks_uri()
        try:
            data = await get_json(self._http, jwks_uri)
        except (HttpError, httpx.HTTPError, ValueError) as e:
            raise KeyFetchFailed(f"Error fetching JWK keys from {jwks_uri}") from e

        if not isinstance(data, dict) or data.get("error") or not isinstance(data.get("keys"), list):
            raise KeyFetchFailed(f"Invalid JWKS document at {jwks_uri}")
        return data["keys"]

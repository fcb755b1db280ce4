"""
JWKS sources.

``RealmCertsSource`` reads the realm's ``/protocol/openid-connect/certs``
endpoint directly; ``DiscoveryJwksSource`` follows each issuer's discovery
document to its ``jwks_uri``.
"""

from __future__ import annotations

import httpx

from ..errors import HttpError, KeyFetchFailed
from ..metadata import MetadataService, get_json
from ..protocols import Jwk, JwksSource

CERTS_PATH = "/protocol/openid-connect/certs"


class RealmCertsSource(JwksSource):
    """Fetches keys from ``{issuer}/protocol/openid-connect/certs``."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def fetch_keys(self, issuer: str) -> list[Jwk]:
        url = issuer.rstrip("/") + CERTS_PATH
        try:
            data = await get_json(self._http, url)
        except (HttpError, httpx.HTTPError, ValueError) as e:
            raise KeyFetchFailed("Error fetching JWK Keys") from e

        if not isinstance(data, dict) or data.get("error") or not isinstance(data.get("keys"), list):
            raise KeyFetchFailed(f"Invalid JWKS document at {url}")
        return data["keys"]


class DiscoveryJwksSource(JwksSource):
    """Fetches keys via each issuer's OIDC discovery document.

    One MetadataService is kept per issuer, so the discovery document is
    loaded once and only the JWKS itself is re-fetched on rotation.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http
        self._metadata: dict[str, MetadataService] = {}

    def metadata_for(self, issuer: str) -> MetadataService:
        service = self._metadata.get(issuer)
        if service is None:
            service = MetadataService(self._http, authority=issuer)
            self._metadata[issuer] = service
        return service

    async def fetch_keys(self, issuer: str) -> list[Jwk]:
        return await self.metadata_for(issuer).get_signing_keys()

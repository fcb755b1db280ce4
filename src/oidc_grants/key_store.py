"""Per-issuer signing key cache with rate-limited, single-flight rotation.

Resolution strategy for ``KeyStore.get_key(issuer, kid)``:

1) Cache lookup (fast path)
    - If the issuer's entry already has a PEM for ``kid`` → return it.

2) Single-flight
    - Misses for the same issuer queue on one ``asyncio.Lock``. After acquiring
      it, the cache is checked again: a refresh performed by the previous holder
      usually answers the waiter without another network call.

3) Rate-limited refresh
    - If the issuer's RefreshGate denies (last refresh was less than
      ``min_interval`` seconds ago) → ``KeyNotFound`` without any request.
    - Otherwise fetch the whole key set from the JwksSource, replace the entry
      wholesale and retry the lookup once.

4) Failure
    - ``KeyNotFound`` if the kid is still unknown, ``KeyFetchFailed`` if the
      JwksSource could not be reached.

Entries are never evicted except by ``clear_cache()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from jwt.algorithms import ECAlgorithm, OKPAlgorithm, RSAAlgorithm
from jwt.exceptions import InvalidKeyError

from .errors import AuthError, KeyFetchFailed, KeyNotFound
from .protocols import Jwk, JwksSource
from .refresh_gate import RefreshGate

logger = logging.getLogger(__name__)

_LOADERS: Mapping[str, Any] = {
    "RSA": RSAAlgorithm.from_jwk,
    "EC": ECAlgorithm.from_jwk,
    "OKP": OKPAlgorithm.from_jwk,
}


def jwk_to_pem(jwk: Jwk) -> str:
    """Convert a public JWK into a SubjectPublicKeyInfo PEM string.

    Raises:
        KeyNotFound: If the key type is unsupported or the key is malformed.
    """
    kty = jwk.get("kty")
    loader = _LOADERS.get(kty) if isinstance(kty, str) else None
    if loader is None:
        raise KeyNotFound(f"Unsupported JWK key type {kty!r} (kid={jwk.get('kid')})")

    try:
        key = loader(dict(jwk))
    except (InvalidKeyError, KeyError, ValueError, TypeError) as e:
        raise KeyNotFound(f"Malformed JWK (kid={jwk.get('kid')})") from e

    # A JWK carrying private material yields a private key; only publish its public half.
    if hasattr(key, "public_key"):
        key = key.public_key()

    return key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo).decode("ascii")


@dataclass(slots=True)
class KeyCacheEntry:
    """Cached key set of one issuer.

    Attributes:
        issuer: Issuer the keys belong to.
        keys: The JWKs exactly as published.
        pem_by_kid: Usable signing keys converted to PEM.
        last_fetch_time: Unix timestamp of the refresh that produced the entry.
    """

    issuer: str
    keys: list[Jwk] = field(default_factory=list)
    pem_by_kid: dict[str, str] = field(default_factory=dict)
    last_fetch_time: float = 0.0


class KeyStore:
    """Resolves PEM signing keys by issuer and kid.

    Example:
        ```python
        async with httpx.AsyncClient() as http:
            store = KeyStore(RealmCertsSource(http), min_interval=10)
            pem = await store.get_key("https://idp/realms/acme", "k1")
        ```

    Concurrency:
        Reads are lock-free. The miss → refetch transition is serialized per
        issuer, so concurrent misses for an issuer never seen before produce
        exactly one JWKS fetch. All use must happen on one event loop.
    """

    def __init__(
        self,
        source: JwksSource,
        min_interval: float = 10,
        alert_threshold: int = 5,
    ) -> None:
        self._source = source
        self._min_interval = min_interval
        self._alert_threshold = alert_threshold
        self._entries: dict[str, KeyCacheEntry] = {}
        self._gates: dict[str, RefreshGate] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def entry(self, issuer: str) -> KeyCacheEntry | None:
        return self._entries.get(issuer)

    def _cached(self, issuer: str, kid: str) -> str | None:
        entry = self._entries.get(issuer)
        if entry is None:
            return None
        return entry.pem_by_kid.get(kid)

    def _gate(self, issuer: str) -> RefreshGate:
        gate = self._gates.get(issuer)
        if gate is None:
            gate = RefreshGate(
                min_interval=self._min_interval,
                alert_threshold=self._alert_threshold,
                name=issuer,
            )
            self._gates[issuer] = gate
        return gate

    async def get_key(self, issuer: str, kid: str) -> str:
        """Return the PEM public key for ``kid`` published by ``issuer``.

        Raises:
            KeyNotFound: Unknown kid after a refresh, or refresh throttled.
            KeyFetchFailed: The key set could not be fetched.
        """
        pem = self._cached(issuer, kid)
        if pem is not None:
            logger.debug("Signing key cache hit for kid=%s", kid)
            return pem

        lock = self._locks.setdefault(issuer, asyncio.Lock())
        async with lock:
            pem = self._cached(issuer, kid)
            if pem is not None:
                return pem

            if not self._gate(issuer).allow():
                logger.warning(
                    "Not enough time elapsed since the last JWKS request for %s, "
                    "not refreshing for kid=%s",
                    issuer,
                    kid,
                )
                raise KeyNotFound(f"No key matching kid={kid} found for issuer {issuer} (refresh throttled)")

            entry = await self._refresh(issuer)

        pem = entry.pem_by_kid.get(kid)
        if pem is None:
            raise KeyNotFound(f"No key matching kid={kid} found for issuer {issuer}")
        return pem

    async def _refresh(self, issuer: str) -> KeyCacheEntry:
        try:
            keys = await self._source.fetch_keys(issuer)
        except KeyFetchFailed:
            raise
        except AuthError as e:
            raise KeyFetchFailed(f"Error fetching JWK keys for {issuer}: {e}") from e

        pem_by_kid: dict[str, str] = {}
        for jwk in keys:
            kid = jwk.get("kid")
            if not kid or jwk.get("use") == "enc":
                continue
            try:
                pem_by_kid[kid] = jwk_to_pem(jwk)
            except KeyNotFound as e:
                logger.warning("Skipping unusable JWK from %s: %s", issuer, e)

        entry = KeyCacheEntry(
            issuer=issuer,
            keys=list(keys),
            pem_by_kid=pem_by_kid,
            last_fetch_time=time.time(),
        )
        self._entries[issuer] = entry
        logger.info("Fetched JWKS for %s: %d signing key(s)", issuer, len(pem_by_kid))
        return entry

    def clear_cache(self) -> None:
        """Drop every cached entry and reset the refresh throttling."""
        self._entries.clear()
        self._gates.clear()

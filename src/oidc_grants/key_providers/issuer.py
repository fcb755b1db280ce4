"""
Issuer-trust-gated public key provider.

Resolves the verification key for an arbitrary token by trusting the token's
own ``iss`` claim only after it passes an IssuerPolicy, then looking the key up
through a KeyStore fed by discovery.

Resolution Strategy
-------------------
1) Parse the token (unverified) and read ``iss`` and the header ``kid``.
2) Evaluate the issuer against the allow/deny lists (deny wins).
3) Ask the KeyStore for ``(iss, kid)``; the KeyStore fetches the issuer's
   JWKS through its discovery document on first use or on rotation.

Security Properties
-------------------
- Keys are never fetched for issuers outside the allow list, so attackers
  cannot make the service contact arbitrary URLs.
- Refresh storms are bounded by the KeyStore's per-issuer RefreshGate.

Example
-------
provider = IssuerKeyProvider(
    IssuerPolicy.of(allowed=[re.compile(r"^https://idp\\.example\\.com/realms/")]),
    http=http,
)
pem = await provider.get_public_key(raw_token)
"""

from __future__ import annotations

import logging

import httpx

from ..errors import KeyProviderError, TokenParseError
from ..issuer_trust import IssuerPolicy
from ..key_store import KeyStore
from ..token import parse_token
from .sources import DiscoveryJwksSource

logger = logging.getLogger(__name__)


class IssuerKeyProvider:
    """Resolves PEM keys for tokens from any trusted issuer."""

    def __init__(
        self,
        policy: IssuerPolicy,
        http: httpx.AsyncClient,
        key_store: KeyStore | None = None,
        min_interval: float = 10,
    ) -> None:
        self._policy = policy
        self._keys = key_store or KeyStore(DiscoveryJwksSource(http), min_interval=min_interval)

    @property
    def key_store(self) -> KeyStore:
        return self._keys

    async def get_public_key(self, raw_token: str) -> str:
        """Return the PEM key that should verify ``raw_token``.

        Raises:
            KeyProviderError: Undecodable token, missing ``iss`` or ``kid``.
            IssuerNotAllowed / IssuerDenied: Issuer fails the policy.
            KeyNotFound / KeyFetchFailed: Key could not be resolved.
        """
        try:
            token = parse_token(raw_token)
        except TokenParseError as e:
            raise KeyProviderError("Can't decode token") from e

        issuer = token.issuer
        if not issuer:
            raise KeyProviderError("Token issuer is not defined")

        self._policy.check(issuer)

        kid = token.kid
        if kid is None:
            raise KeyProviderError(f"Token from {issuer} has no kid")

        logger.debug("Resolving key kid=%s for trusted issuer %s", kid, issuer)
        return await self._keys.get_key(issuer, kid)

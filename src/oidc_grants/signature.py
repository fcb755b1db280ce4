"""JWS signature verification for parsed tokens.

``verify_signature`` is the pure check used by ``GrantManager.validate_token``;
``Signature`` wraps it with key resolution for admin callbacks, whose payload
must not be trusted before the signature is confirmed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from jwt.algorithms import get_default_algorithms
from jwt.exceptions import InvalidKeyError

from .errors import KeyNotFound, TokenMissingKid, TokenNotSigned, TokenSignatureInvalid
from .key_store import KeyStore
from .token import Token

logger = logging.getLogger(__name__)

_ALGORITHMS = get_default_algorithms()


def verify_signature(token: Token, pem: str, algorithms: Sequence[str] = ("RS256",)) -> bool:
    """Return True if ``token``'s signature verifies with ``pem``.

    The header ``alg`` (default RS256) must be in the ``algorithms`` allowlist;
    anything else, including ``none`` and HMAC algorithms, fails.
    """
    alg_name = token.header.get("alg", "RS256")
    if alg_name not in algorithms or not token.signature:
        return False

    algorithm = _ALGORITHMS.get(alg_name)
    if algorithm is None:
        return False

    try:
        key = algorithm.prepare_key(pem)
    except (InvalidKeyError, ValueError, TypeError):
        logger.warning("Unable to load %s verification key", alg_name, exc_info=True)
        return False

    return algorithm.verify(token.signed.encode("utf-8"), key, token.signature)


class Signature:
    """Verifies tokens signed by a single issuer.

    Args:
        key_store: KeyStore used to resolve the header ``kid``.
        issuer: Issuer (realm URL) whose keys are trusted.
        public_key: Optional static PEM key; bypasses the KeyStore.
        algorithms: Allowed signing algorithms.
    """

    def __init__(
        self,
        key_store: KeyStore,
        issuer: str,
        public_key: str | None = None,
        algorithms: Sequence[str] = ("RS256",),
    ) -> None:
        self._keys = key_store
        self._issuer = issuer
        self._public_key = public_key
        self._algorithms = tuple(algorithms)

    async def verify(self, token: Token) -> Token:
        """Verify ``token`` and return it unchanged.

        Raises:
            TokenNotSigned: Signing input or signature missing.
            TokenMissingKid: No static key and no ``kid`` header.
            TokenSignatureInvalid: Key unavailable or signature mismatch.
            KeyFetchFailed: Issuer keys could not be fetched.
        """
        if not token.signed or not token.signature:
            raise TokenNotSigned("failed to load public key to verify token. Reason: signature is missing")

        pem = self._public_key
        if pem is None:
            if token.kid is None:
                raise TokenMissingKid("failed to load public key to verify token. Reason: kid is missing")
            try:
                pem = await self._keys.get_key(self._issuer, token.kid)
            except KeyNotFound as e:
                raise TokenSignatureInvalid("Can't retrieve key after rotation") from e

        if not verify_signature(token, pem, self._algorithms):
            raise TokenSignatureInvalid("admin request failed: invalid token (signature)")

        return token

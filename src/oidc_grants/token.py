"""Compact JWT parsing and claim predicates.

A ``Token`` is the parsed, *unverified* view of a JWT: header, claims, raw
signature bytes and the signing input. Trust is established separately by
``GrantManager.validate_token`` (or ``Signature.verify`` for admin callbacks);
until then, treat every claim as attacker-controlled.

Role specification rules used by ``Token.has_role``:

- ``"viewer"``        role ``viewer`` of the token's own client (``client_id``)
- ``"realm:admin"``   realm-level role ``admin``
- ``"billing:read"``  role ``read`` of application ``billing``
"""

from __future__ import annotations

import binascii
import json
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from jwt.utils import base64url_decode

from .errors import TokenParseError
from .protocols import Claims


def _decode_segment(segment: str, name: str) -> dict[str, Any]:
    try:
        decoded = json.loads(base64url_decode(segment))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise TokenParseError(f"invalid token (malformed {name})") from e

    if not isinstance(decoded, dict):
        raise TokenParseError(f"invalid token (malformed {name})")
    return decoded


def is_numeric_date(value: Any) -> bool:
    """True for a JSON number usable as seconds since the epoch."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_claim_types(content: Claims) -> None:
    for claim in ("exp", "iat", "nbf"):
        value = content.get(claim)
        if value is not None and not is_numeric_date(value):
            raise TokenParseError(f"invalid token (malformed {claim})")

    aud = content.get("aud")
    if aud is None or isinstance(aud, str):
        return
    if not isinstance(aud, list) or not all(isinstance(item, str) for item in aud):
        raise TokenParseError("invalid token (malformed aud)")


@dataclass(frozen=True, slots=True)
class Token:
    """A parsed JSON Web Token.

    Attributes:
        token: The raw compact serialization.
        header: Decoded JOSE header (``alg``, ``kid``, ...).
        content: Decoded claims.
        signature: Raw signature bytes (segment 2, base64url-decoded).
        signed: Signing input, ``segment0 + "." + segment1``.
        client_id: Client the token was issued to; enables bare role names
            in ``has_role``. Only set for access tokens.
    """

    token: str
    header: Mapping[str, Any]
    content: Claims
    signature: bytes
    signed: str
    client_id: str | None = None

    @property
    def kid(self) -> str | None:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) and kid else None

    @property
    def issuer(self) -> str | None:
        return self.content.get("iss")

    @property
    def audience(self) -> list[str]:
        """The ``aud`` claim normalized to a list."""
        aud = self.content.get("aud")
        if aud is None:
            return []
        if isinstance(aud, str):
            return [aud]
        if not isinstance(aud, list):
            return []
        return [item for item in aud if isinstance(item, str)]

    def is_expired(self) -> bool:
        """Return True when ``exp`` has passed. Tokens without ``exp`` never expire.

        A non-numeric ``exp`` counts as expired.
        """
        exp = self.content.get("exp")
        if exp is None:
            return False
        if not is_numeric_date(exp):
            return True
        return exp * 1000 < time.time() * 1000

    def has_role(self, name: str) -> bool:
        """Check a role specification (see module docstring).

        Bare names need ``client_id``; without it they never match. Only the
        first two ``:``-separated parts are used, so ``"a:b:c"`` means role
        ``b`` of application ``a``.
        """
        parts = name.split(":")
        if len(parts) == 1:
            if not self.client_id:
                return False
            return self.has_application_role(self.client_id, name)

        if parts[0] == "realm":
            return self.has_realm_role(parts[1])

        return self.has_application_role(parts[0], parts[1])

    def has_application_role(self, app_name: str, role_name: str) -> bool:
        resource_access = self.content.get("resource_access")
        if not isinstance(resource_access, Mapping):
            return False

        app_roles = resource_access.get(app_name)
        if not isinstance(app_roles, Mapping):
            return False

        return role_name in (app_roles.get("roles") or ())

    def has_realm_role(self, role_name: str) -> bool:
        realm_access = self.content.get("realm_access")
        if not isinstance(realm_access, Mapping):
            return False

        return role_name in (realm_access.get("roles") or ())

    def has_permission(self, resource: str, scope: str | None = None) -> bool:
        """Check ``authorization.permissions`` for a resource (and scope).

        The first permission whose ``rsid`` or ``rsname`` matches decides. A
        permission without scopes grants every scope of its resource.
        """
        authorization = self.content.get("authorization")
        if not isinstance(authorization, Mapping):
            return False

        for permission in authorization.get("permissions") or ():
            if not isinstance(permission, Mapping):
                continue
            if permission.get("rsid") != resource and permission.get("rsname") != resource:
                continue

            scopes = permission.get("scopes")
            if scope and scopes and scope not in scopes:
                return False
            return True

        return False


def parse_token(raw: str, client_id: str | None = None) -> Token:
    """Parse a compact JWT without verifying it.

    Args:
        raw: ``header.payload.signature`` string.
        client_id: Optional client id (set for access tokens).

    Returns:
        The parsed Token.

    Raises:
        TokenParseError: If the string is not three base64url segments whose
            first two decode to JSON objects, or if ``exp``, ``iat``, ``nbf``
            or ``aud`` have the wrong JSON type.
    """
    if not isinstance(raw, str):
        raise TokenParseError("invalid token (malformed)")

    parts = raw.split(".")
    if len(parts) != 3:
        raise TokenParseError("invalid token (malformed)")

    header = _decode_segment(parts[0], "header")
    content = _decode_segment(parts[1], "payload")
    _check_claim_types(content)

    try:
        signature = base64url_decode(parts[2])
    except (binascii.Error, ValueError) as e:
        raise TokenParseError("invalid token (malformed signature)") from e

    return Token(
        token=raw,
        header=header,
        content=content,
        signature=signature,
        signed=parts[0] + "." + parts[1],
        client_id=client_id,
    )

"""Protocol definitions for the OIDC grant adapter.

This module defines structural interfaces using Protocol (PEP 544) for the
collaborators the core engine talks to:
- JWKS sources (where signing keys come from)
- Grant stores (where grants are persisted between requests)
- Token extraction (where a raw token comes from in a web request)

Any class that implements the required methods satisfies the protocol, which
keeps the engine independent of a particular IdP layout, cache backend or web
framework.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, TypeAlias

# ============================================================================
# Type Aliases
# ============================================================================

Claims: TypeAlias = Mapping[str, Any]
"""Represents the decoded JWT payload as an immutable mapping."""

Jwk: TypeAlias = Mapping[str, Any]
"""A single JSON Web Key as published in a JWKS document."""

ViewFunc: TypeAlias = Callable[..., Any]
"""Type alias for Flask view functions (callable that takes any args and returns any)."""


# ============================================================================
# Core Protocols
# ============================================================================


class JwksSource(Protocol):
    """Protocol for fetching the current signing keys of an issuer.

    Implementations perform network I/O and are awaited by ``KeyStore`` only
    when a cache miss is allowed to refresh.
    """

    async def fetch_keys(self, issuer: str) -> list[Jwk]:
        """Fetch the full, current key set published by ``issuer``.

        Raises:
            KeyFetchFailed: If the endpoint cannot be reached or answers badly.
        """
        ...


class GrantStore(Protocol):
    """Protocol for persisting raw grant JSON keyed by session id.

    The raw JSON is what the token endpoint returned; it is re-validated (and
    refreshed if needed) every time it is loaded.
    """

    def get(self, session_id: str) -> str | None:
        """Return the stored raw grant JSON, or None if absent/expired."""
        ...

    def set(self, session_id: str, raw_grant: str, ttl_seconds: int) -> None:
        """Store raw grant JSON for ``ttl_seconds``."""
        ...

    def clear(self, session_id: str) -> None:
        """Forget the grant of a session (admin logout)."""
        ...


class Extractor(Protocol):
    """Protocol for extracting a raw JWT from the current Flask request."""

    def extract(self) -> str:
        """Return the raw JWT string.

        Raises:
            TokenMissing: Token not found or improperly formatted.
        """
        ...

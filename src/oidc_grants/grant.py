"""The grant container returned by the token endpoint."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from .token import Token


class Grant:
    """Bundle of access, refresh and ID tokens plus the raw server payload.

    Field names use the token endpoint's snake_case JSON names. A Grant is
    produced by ``GrantManager`` and owned by the caller; refresh and
    validation update the same instance through ``update`` so that references
    held elsewhere (sessions, request context) stay current.
    """

    __slots__ = ("access_token", "refresh_token", "id_token", "token_type", "expires_in", "raw")

    def __init__(
        self,
        access_token: Token | None = None,
        refresh_token: Token | None = None,
        id_token: Token | None = None,
        token_type: str | None = None,
        expires_in: int | None = None,
        raw: str | Mapping[str, Any] | None = None,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.id_token = id_token
        self.token_type = token_type
        self.expires_in = expires_in
        self.raw = raw

    def update(self, other: Grant) -> None:
        """Copy every field of ``other`` into this grant, in place."""
        self.access_token = other.access_token
        self.refresh_token = other.refresh_token
        self.id_token = other.id_token
        self.token_type = other.token_type
        self.expires_in = other.expires_in
        self.raw = other.raw

    def is_expired(self) -> bool:
        """A grant is expired when its access token is missing or expired.

        An expired grant may still be refreshable if it holds a valid
        refresh token.
        """
        if self.access_token is None:
            return True
        return self.access_token.is_expired()

    def to_json(self) -> str | None:
        """Return the raw payload as JSON text, or None for programmatic grants."""
        if self.raw is None:
            return None
        if isinstance(self.raw, str):
            return self.raw
        return json.dumps(dict(self.raw))

    def __str__(self) -> str:
        return self.to_json() or ""

    def __repr__(self) -> str:
        present = [
            name for name in ("access_token", "refresh_token", "id_token") if getattr(self, name)
        ]
        return f"Grant(tokens={present}, token_type={self.token_type!r}, expires_in={self.expires_in!r})"

"""Admin callbacks pushed by the IdP.

The IdP POSTs a signed JWT as the raw request body to ``k_logout`` (session
or global logout) and ``k_push_not_before`` (revocation watermark). Nothing in
the body is trusted until ``Signature.verify`` succeeds.
"""

from __future__ import annotations

import logging

from .errors import AdminActionError, TokenParseError
from .grant_manager import GrantManager
from .protocols import GrantStore
from .signature import Signature
from .token import parse_token

logger = logging.getLogger(__name__)


class AdminCallbacks:
    """Verifies and applies admin callback bodies.

    Args:
        grant_manager: Manager whose revocation watermark is updated.
        signature: Verifier for callback tokens. Defaults to the realm's keys
            (or static realm key) of ``grant_manager``.
        store: Grant store cleared on session logout.
    """

    def __init__(
        self,
        grant_manager: GrantManager,
        signature: Signature | None = None,
        store: GrantStore | None = None,
    ) -> None:
        self._manager = grant_manager
        self._signature = signature or Signature(
            grant_manager.key_store,
            grant_manager.realm_url,
            public_key=grant_manager.public_key,
            algorithms=grant_manager.algorithms,
        )
        self._store = store

    async def _apply(self, body: str | bytes, expected_action: str) -> str:
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")

        try:
            token = parse_token(body.strip())
        except TokenParseError as e:
            raise AdminActionError(f"admin request failed: {e}") from e

        await self._signature.verify(token)

        action = token.content.get("action")
        if action != expected_action:
            raise AdminActionError(f"admin request failed: unexpected action {action!r}")

        logger.info("Applying admin action %s", action)
        return self._manager.apply_admin_action(token, self._store)

    async def logout(self, body: str | bytes) -> str:
        """Handle a ``k_logout`` body; returns the applied action."""
        return await self._apply(body, "LOGOUT")

    async def push_not_before(self, body: str | bytes) -> str:
        """Handle a ``k_push_not_before`` body; returns the applied action."""
        return await self._apply(body, "PUSH_NOT_BEFORE")

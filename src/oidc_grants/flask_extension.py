"""Flask extension for OIDC bearer authentication and admin callbacks.

Key Components:
- OIDCExtension: route decorator and admin endpoint registration

Security Model:
1. Extract token from request (header or cookie)
2. Validate it with ``GrantManager.validate_token`` (type Bearer)
3. Store the validated Token in ``flask.g.access_token`` for route access
4. Optionally enforce roles/permissions (TokenAuthorizer)
5. Convert auth errors to HTTP responses (401/403)

Flask views are synchronous while the grant engine is async. All coroutines
run on one background event loop owned by the extension, so the shared
``httpx.AsyncClient`` and the KeyStore locks always live on the same loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine, Sequence
from functools import wraps
from typing import TYPE_CHECKING, Any, Final, TypeVar

from flask import Flask, abort, g, request

from .admin import AdminCallbacks
from .authorization import TokenAuthorizer
from .errors import AuthError
from .extractors import BearerExtractor

if TYPE_CHECKING:
    from .grant_manager import GrantManager
    from .protocols import Extractor, GrantStore, ViewFunc

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXT_KEY: Final[str] = "oidc_grants"
"""Flask extensions registry key for OIDCExtension."""


class _LoopThread:
    """A daemon thread running an event loop for coroutines submitted from views."""

    def __init__(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="oidc-grants-loop", daemon=True)
        self._thread.start()

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    def stop(self) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()


class OIDCExtension:
    """
    Flask glue for the grant engine.

    Responsibilities:
    - Extract token from request
    - Validate token (GrantManager)
    - Store the validated Token in `flask.g.access_token`
    - Optionally authorize roles/permissions (TokenAuthorizer)
    - Serve the IdP's `k_logout` / `k_push_not_before` admin callbacks

    Usage:
        oidc = OIDCExtension(manager, store=InMemoryGrantStore())
        oidc.init_app(app)

        @app.get("/admin")
        @oidc.require(roles=["realm:admin"])
        def admin(): ...
    """

    def __init__(
        self,
        grant_manager: GrantManager,
        authorizer: TokenAuthorizer | None = None,
        extractor: Extractor | None = None,
        admin: AdminCallbacks | None = None,
        store: GrantStore | None = None,
    ) -> None:
        self._manager = grant_manager
        self._authorizer = authorizer or TokenAuthorizer()
        self._extractor: Extractor = extractor or BearerExtractor()
        self._admin = admin or AdminCallbacks(grant_manager, store=store)
        self._loop = _LoopThread()

    @property
    def grant_manager(self) -> GrantManager:
        return self._manager

    def init_app(self, app: Flask, admin_url: str = "/") -> None:
        """Register the extension and the admin callback endpoints.

        Args:
            app: The Flask application instance.
            admin_url: Prefix of ``k_logout`` and ``k_push_not_before``; must
                match the client's admin URL configured at the IdP.
        """
        prefix = admin_url.rstrip("/")
        app.add_url_rule(
            f"{prefix}/k_logout",
            endpoint="oidc_k_logout",
            view_func=self._admin_view(self._admin.logout),
            methods=["POST"],
        )
        app.add_url_rule(
            f"{prefix}/k_push_not_before",
            endpoint="oidc_k_push_not_before",
            view_func=self._admin_view(self._admin.push_not_before),
            methods=["POST"],
        )
        app.extensions[_EXT_KEY] = self

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a grant engine coroutine from synchronous code and return its result.

        Example:
            grant = oidc.run(oidc.grant_manager.obtain_from_code(code, redirect_uri=uri))
        """
        return self._loop.run(coro)

    def close(self) -> None:
        """Close the grant manager's HTTP client and stop the event loop."""
        self._loop.run(self._manager.close())
        self._loop.stop()

    def _admin_view(self, handler: Any) -> ViewFunc:
        def view() -> tuple[str, int]:
            try:
                self._loop.run(handler(request.get_data()))
            except AuthError as e:
                logger.warning("Rejected admin callback: %s", e)
                abort(e.status_code, description=str(e))
            return "ok", 200

        return view

    def require(
        self,
        *,
        roles: Sequence[str] = (),
        permissions: Sequence[str] = (),
        require_all_permissions: bool = True,
    ):
        """Decorator protecting a Flask route with token validation and optional RBAC.

        Authorization behavior:
        - ``roles``: any-of, in ``Token.has_role`` syntax (``realm:admin``,
          ``app:role`` or a bare role of the adapter's client).
        - ``permissions``: ``"resource#scope"`` strings; all-of by default,
          any-of with ``require_all_permissions=False``.

        Error mapping:
        - ``InvalidToken`` (missing, expired, stale, ...) -> HTTP 401
        - ``Forbidden``                                   -> HTTP 403
        - Any other error                                 -> HTTP 401 ("Authentication failed")

        Side Effects:
            Writes the validated Token to ``flask.g.access_token`` before
            calling the view.
        """
        roles_set = frozenset(roles)
        permissions_set = frozenset(permissions)

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    raw = self._extractor.extract()
                    token = self._loop.run(self._manager.validate_token(raw, "Bearer"))

                    g.access_token = token

                    self._authorizer.authorize(
                        token,
                        roles=roles_set,
                        permissions=permissions_set,
                        require_all_permissions=require_all_permissions,
                    )

                except AuthError as e:
                    abort(e.status_code, description=str(e))
                except Exception:
                    logger.exception("Unexpected error while authenticating request")
                    abort(401, description="Authentication failed")

                return view(*args, **kwargs)

            return wrapper

        return decorator

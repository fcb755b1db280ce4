"""Grant acquisition, refresh and validation.

High-level flow
---------------
1. ``obtain_*`` POSTs to the realm's token endpoint.
2. ``create_grant`` parses every JWT of the JSON response into a ``Token``.
3. Refreshable grants go through ``ensure_freshness`` first (an already
   expired access token is exchanged immediately).
4. ``validate_grant`` runs ``validate_token`` on the access token and, unless
   bearer-only, the ID token, concurrently.
5. ``validate_token`` performs the ordered checks (expiry, type, revocation
   watermark, issuer, audience) and finally verifies the signature, resolving
   the key through the ``KeyStore`` by ``kid`` unless a static realm key is
   configured.

Grant states: Unvalidated → Validating → Valid; a Valid grant whose access
token expires goes back through refresh + validation on ``ensure_freshness``,
or fails with ``RefreshTokenMissing`` / ``RefreshTokenExpired``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Mapping
from typing import Any, Final

import httpx

from .authorization import AuthzRequest, ResponseMode
from .config import AdapterConfig
from .errors import (
    AdminActionError,
    AuthError,
    GrantValidationError,
    HttpError,
    KeyFetchFailed,
    KeyNotFound,
    RefreshTokenExpired,
    RefreshTokenMissing,
    TokenExpired,
    TokenMissing,
    TokenMissingKid,
    TokenNotSigned,
    TokenParseError,
    TokenSignatureInvalid,
    TokenStale,
    TokenWrongAudience,
    TokenWrongAuthorizedParty,
    TokenWrongIssuer,
    TokenWrongType,
)
from .grant import Grant
from .key_providers import RealmCertsSource
from .key_store import KeyStore
from .protocols import GrantStore
from .signature import verify_signature
from .token import Token, is_numeric_date, parse_token

logger = logging.getLogger(__name__)

TOKEN_PATH: Final[str] = "/protocol/openid-connect/token"
INTROSPECT_PATH: Final[str] = TOKEN_PATH + "/introspect"
USERINFO_PATH: Final[str] = "/protocol/openid-connect/userinfo"
UMA_TICKET_GRANT: Final[str] = "urn:ietf:params:oauth:grant-type:uma-ticket"
X_CLIENT: Final[str] = "oidc-grants-python"

_DEFAULT_STORE_TTL: Final[int] = 300


def _raw_token(token: Token | str) -> str:
    return token.token if isinstance(token, Token) else token


class GrantManager:
    """Obtains, refreshes and validates grants for one realm and client.

    Example:
        ```python
        config = AdapterConfig(
            auth_server_url="https://idp.example.com",
            realm="acme",
            client_id="shop",
            secret="s3cr3t",
        )
        async with GrantManager(config) as manager:
            grant = await manager.obtain_directly("alice", "password")
            grant = await manager.ensure_freshness(grant)
            if grant.access_token.has_role("realm:admin"):
                ...
        ```

    Attributes:
        realm_url: Expected ``iss`` of every token.
        key_store: Signing key cache (shared by all validations).
        not_before: Revocation watermark; tokens with ``iat`` below it are stale.
    """

    def __init__(
        self,
        config: AdapterConfig,
        http: httpx.AsyncClient | None = None,
        key_store: KeyStore | None = None,
    ) -> None:
        self.config = config
        self.realm_url = config.realm_url
        self.client_id = config.client_id
        self.secret = config.secret
        self.public_key = config.realm_public_key
        self.public = config.public
        self.bearer_only = config.bearer_only
        self.verify_token_audience = config.verify_token_audience
        self.algorithms = config.algorithms

        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=config.http_timeout)
        self.key_store = key_store or KeyStore(
            RealmCertsSource(self._http),
            min_interval=config.min_time_between_jwks_requests,
        )

        self._not_before = 0
        self._not_before_lock = threading.Lock()

    async def __aenter__(self) -> GrantManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._owns_http:
            await self._http.aclose()

    @property
    def not_before(self) -> int:
        with self._not_before_lock:
            return self._not_before

    @not_before.setter
    def not_before(self, value: int) -> None:
        with self._not_before_lock:
            self._not_before = int(value)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(
        self,
        data: Mapping[str, str | list[str] | None],
        path: str = TOKEN_PATH,
        bearer: str | None = None,
    ) -> Any:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Client": X_CLIENT,
        }
        auth: httpx.BasicAuth | None = None
        if not self.public:
            auth = httpx.BasicAuth(self.client_id or "", self.secret or "")
        elif bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        form = {key: value for key, value in data.items() if value is not None}
        response = await self._http.post(f"{self.realm_url}{path}", data=form, headers=headers, auth=auth)
        if not response.is_success:
            raise HttpError(response.status_code, response.text, response.reason_phrase)
        return response.json()

    # ------------------------------------------------------------------
    # Obtaining grants
    # ------------------------------------------------------------------

    async def obtain_directly(self, username: str, password: str, scope: str = "openid") -> Grant:
        """Obtain a grant with the resource owner password credentials grant.

        Direct access grants must be enabled for the client.
        """
        logger.debug("Obtaining grant for client %s with password grant", self.client_id)
        data = {
            "client_id": self.client_id,
            "username": username,
            "password": password,
            "grant_type": "password",
            "scope": scope,
        }
        return await self.create_grant(await self._post(data))

    async def obtain_from_code(
        self,
        code: str,
        session_id: str | None = None,
        session_host: str | None = None,
        redirect_uri: str | None = None,
    ) -> Grant:
        """Exchange an authorization code received on the redirect URI.

        ``session_id`` and ``session_host`` let the IdP address this adapter's
        session in later admin logout callbacks.
        """
        logger.debug("Exchanging authorization code for client %s", self.client_id)
        data = {
            "client_session_state": session_id,
            "client_session_host": session_host,
            "code": code,
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
        }
        return await self.create_grant(await self._post(data))

    async def obtain_from_client_credentials(self, scope: str = "openid") -> Grant:
        """Obtain a service account grant (service accounts must be enabled)."""
        logger.debug("Obtaining service account grant for client %s", self.client_id)
        data = {
            "grant_type": "client_credentials",
            "scope": scope,
            "client_id": self.client_id,
        }
        return await self.create_grant(await self._post(data))

    async def check_permissions(
        self,
        authz_request: AuthzRequest,
        response_mode: ResponseMode = None,
        access_token: Token | str | None = None,
    ) -> Grant | list[dict[str, Any]] | dict[str, Any]:
        """Ask the IdP to evaluate UMA permissions for ``access_token``.

        Args:
            authz_request: Audience, claims and resource/scope permissions.
            response_mode: ``"decision"`` returns ``{"result": bool}``,
                ``"permissions"`` the granted permission list, ``None`` a
                validated Grant whose access token carries the permissions.
            access_token: The caller's access token. Confidential clients send
                it as ``subject_token``; public clients as a bearer header.

        Raises:
            TokenMissing: Confidential client and no access token given.
            HttpError: The IdP refused the request (e.g. 403 not authorized).
        """
        bearer = _raw_token(access_token) if access_token is not None else None

        data: dict[str, str | list[str] | None] = {
            "grant_type": UMA_TICKET_GRANT,
            "audience": authz_request.audience or self.client_id,
            "response_mode": response_mode,
            "claim_token": authz_request.claim_token,
            "claim_token_format": authz_request.claim_token_format,
        }
        if authz_request.permissions:
            data["permission"] = [permission.to_param() for permission in authz_request.permissions]

        if not self.public:
            if not bearer:
                raise TokenMissing("No bearer in header")
            data["subject_token"] = bearer

        result = await self._post(data, bearer=bearer)
        if response_mode is not None:
            return result
        return await self.create_grant(result)

    # ------------------------------------------------------------------
    # Freshness
    # ------------------------------------------------------------------

    def is_grant_refreshable(self, grant: Grant) -> bool:
        return not self.bearer_only and grant.refresh_token is not None

    async def ensure_freshness(self, grant: Grant) -> Grant:
        """Refresh ``grant`` in place if its access token has expired.

        A grant that is not expired is returned untouched. Otherwise the
        refresh token is exchanged and the new tokens, once validated, are
        copied into the same Grant instance.

        Raises:
            RefreshTokenMissing: No refresh token to use.
            RefreshTokenExpired: The session is over; re-authentication needed.
            HttpError: The token endpoint failed; retryable.
        """
        if not grant.is_expired():
            return grant

        if grant.refresh_token is None:
            raise RefreshTokenMissing()

        if grant.refresh_token.is_expired():
            raise RefreshTokenExpired()

        logger.debug("Access token expired, refreshing grant for client %s", self.client_id)
        data = {
            "grant_type": "refresh_token",
            "refresh_token": grant.refresh_token.token,
            "client_id": self.client_id,
        }
        refreshed = await self.create_grant(await self._post(data))
        grant.update(refreshed)
        return grant

    # ------------------------------------------------------------------
    # Grant construction and validation
    # ------------------------------------------------------------------

    async def create_grant(self, raw: str | bytes | Mapping[str, Any]) -> Grant:
        """Build and validate a Grant from a token endpoint JSON response.

        Refreshable grants are passed through ``ensure_freshness`` before
        validation, so a stored grant with an expired access token comes back
        refreshed.

        Raises:
            GrantValidationError: A token is malformed or fails validation.
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise GrantValidationError(TokenParseError("invalid token (malformed grant)")) from e

        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
        except ValueError as e:
            raise GrantValidationError(TokenParseError("invalid token (malformed grant)")) from e
        if not isinstance(data, Mapping):
            raise GrantValidationError(TokenParseError("invalid token (malformed grant)"))

        try:
            grant = Grant(
                access_token=self._parse(data.get("access_token"), self.client_id),
                refresh_token=self._parse(data.get("refresh_token")),
                id_token=self._parse(data.get("id_token")),
                token_type=data.get("token_type"),
                expires_in=data.get("expires_in"),
                raw=raw,
            )
        except TokenParseError as e:
            raise GrantValidationError(e) from e

        if self.is_grant_refreshable(grant):
            grant = await self.ensure_freshness(grant)

        return await self.validate_grant(grant)

    @staticmethod
    def _parse(value: Any, client_id: str | None = None) -> Token | None:
        if not value:
            return None
        return parse_token(value, client_id)

    async def validate_grant(self, grant: Grant) -> Grant:
        """Validate the tokens of ``grant`` in place.

        The access token (type ``Bearer``) and, unless bearer-only, the ID
        token (type ``ID``) are validated concurrently. Both must pass.

        Raises:
            GrantValidationError: ``"Grant validation failed. Reason: <cause>"``.
        """
        names = ["access_token"]
        checks = [self.validate_token(grant.access_token, "Bearer")]
        if not self.bearer_only and grant.id_token is not None:
            names.append("id_token")
            checks.append(self.validate_token(grant.id_token, "ID"))

        results = await asyncio.gather(*checks, return_exceptions=True)
        for result in results:
            if isinstance(result, AuthError):
                logger.debug("Grant validation failed: %s", result)
                raise GrantValidationError(result) from result
            if isinstance(result, BaseException):
                raise result

        for name, token in zip(names, results):
            setattr(grant, name, token)
        return grant

    async def validate_token(self, token: Token | str | None, expected_type: str = "Bearer") -> Token:
        """Validate one token; the first failing check wins.

        Checks, in order: missing, expired, not signed, wrong type, stale
        (``iat`` before ``not_before``), wrong ISS, audience/authorized party,
        signature.

        Returns:
            The same Token instance.

        Raises:
            InvalidToken: A subclass naming the failed check.
            KeyFetchFailed: The realm keys could not be fetched.
        """
        if token is None:
            raise TokenMissing()
        if isinstance(token, str):
            token = parse_token(token, self.client_id)

        content = token.content

        if token.is_expired():
            raise TokenExpired()
        if not token.signed or not token.signature:
            raise TokenNotSigned()
        if content.get("typ") != expected_type:
            raise TokenWrongType()

        iat = content.get("iat")
        if not is_numeric_date(iat) or iat < self.not_before:
            raise TokenStale()

        if content.get("iss") != self.realm_url:
            raise TokenWrongIssuer()

        audience = token.audience
        if expected_type == "ID":
            if not self.client_id or self.client_id not in audience:
                raise TokenWrongAudience()
            if content.get("azp") != self.client_id:
                raise TokenWrongAuthorizedParty()
        elif self.verify_token_audience and (not self.client_id or self.client_id not in audience):
            raise TokenWrongAudience()

        if self.public_key:
            if not verify_signature(token, self.public_key, self.algorithms):
                raise TokenSignatureInvalid(reason="signature")
            return token

        kid = token.kid
        if kid is None:
            raise TokenMissingKid()

        try:
            pem = await self.key_store.get_key(self.realm_url, kid)
        except KeyNotFound as e:
            raise TokenSignatureInvalid(reason="public key signature") from e
        except KeyFetchFailed as e:
            raise KeyFetchFailed(f"failed to load public key to verify token. Reason: {e}") from e

        if not verify_signature(token, pem, self.algorithms):
            raise TokenSignatureInvalid(reason="public key signature")
        return token

    # ------------------------------------------------------------------
    # Live checks against the IdP
    # ------------------------------------------------------------------

    async def validate_access_token(self, token: Token | str) -> Token | str | bool:
        """Introspect ``token`` at the IdP.

        Returns:
            The token itself when active, ``False`` when the IdP reports it
            inactive. ``False`` is a normal outcome, not an error.

        Raises:
            HttpError: The introspection endpoint failed.
        """
        data = {
            "token": _raw_token(token),
            "client_secret": self.secret,
            "client_id": self.client_id,
        }
        result = await self._post(data, path=INTROSPECT_PATH)
        if not result.get("active"):
            logger.debug("Introspection reports token inactive")
            return False
        return token

    async def user_info(self, token: Token | str) -> dict[str, Any]:
        """Fetch standard OIDC claims for ``token`` from the userinfo endpoint."""
        response = await self._http.get(
            f"{self.realm_url}{USERINFO_PATH}",
            headers={
                "Authorization": f"Bearer {_raw_token(token)}",
                "Accept": "application/json",
                "X-Client": X_CLIENT,
            },
        )
        if not response.is_success:
            raise HttpError(response.status_code, response.text, response.reason_phrase)

        claims = response.json()
        if claims.get("error"):
            raise AuthError(json.dumps(claims))
        return claims

    # ------------------------------------------------------------------
    # Revocation and persistence
    # ------------------------------------------------------------------

    def apply_admin_action(self, token: Token, store: GrantStore | None = None) -> str:
        """Apply a *verified* admin callback token.

        ``PUSH_NOT_BEFORE`` moves the revocation watermark. ``LOGOUT`` clears
        the listed adapter sessions from ``store``, or moves the watermark
        when no session ids are listed.

        Returns:
            The applied action name.

        Raises:
            AdminActionError: Unknown action.
        """
        action = token.content.get("action")
        not_before = token.content.get("notBefore", 0)
        if action in ("PUSH_NOT_BEFORE", "LOGOUT") and not is_numeric_date(not_before):
            raise AdminActionError(f"Invalid notBefore {not_before!r}")

        if action == "PUSH_NOT_BEFORE":
            self.not_before = not_before
            logger.info("Revocation watermark set to %d", self.not_before)
        elif action == "LOGOUT":
            session_ids = token.content.get("adapterSessionIds")
            if not session_ids:
                self.not_before = not_before
                logger.info("Global logout, revocation watermark set to %d", self.not_before)
            elif store is None:
                logger.warning("Logout for %d session(s) received without a grant store", len(session_ids))
            else:
                for session_id in session_ids:
                    store.clear(session_id)
                logger.info("Logged out %d session(s)", len(session_ids))
        else:
            raise AdminActionError(f"Unsupported admin action {action!r}")

        return action

    def store_grant(
        self,
        store: GrantStore,
        session_id: str,
        grant: Grant,
        ttl_seconds: int | None = None,
    ) -> None:
        """Persist the raw JSON of ``grant`` for ``session_id``.

        The default TTL lasts until the refresh token (or, without one, the
        access token) expires.
        """
        raw = grant.to_json()
        if raw is None:
            return
        store.set(session_id, raw, ttl_seconds or self._grant_ttl(grant))

    @staticmethod
    def _grant_ttl(grant: Grant) -> int:
        token = grant.refresh_token or grant.access_token
        exp = token.content.get("exp") if token is not None else None
        if not is_numeric_date(exp):
            return grant.expires_in or _DEFAULT_STORE_TTL
        return max(1, int(exp - time.time()))

    async def load_grant(self, store: GrantStore, session_id: str) -> Grant | None:
        """Restore, refresh if needed, validate and re-store a persisted grant.

        Returns None when nothing is stored. A grant that can no longer be
        used is cleared from the store before the error propagates.
        """
        raw = store.get(session_id)
        if raw is None:
            return None

        try:
            grant = await self.create_grant(raw)
        except AuthError:
            store.clear(session_id)
            raise

        self.store_grant(store, session_id, grant)
        return grant

"""Authentication, key-resolution and grant errors.

This module defines the exception hierarchy for every failure the adapter can
report. All errors inherit from AuthError to allow catch-all error handling.

Hierarchy:
    AuthError
    ├── InvalidToken            token failed one of the ordered validation checks
    ├── KeyProviderError        signing key, issuer or discovery metadata unusable
    ├── GrantError              grant could not be validated or refreshed
    ├── HttpError               the IdP answered with a non-2xx status
    ├── Forbidden               valid token, insufficient roles/permissions
    └── AdminActionError        admin callback carried an unsupported action

Security Note:
    Messages are short and stable (``invalid token (expired)``) so they can be
    logged and asserted on. They never contain raw tokens or secrets.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all authentication and authorization failures.

    Attributes:
        status_code: HTTP status an outer web layer should answer with.
    """

    status_code: int = 401


# ============================================================================
# Token validation
# ============================================================================


class InvalidToken(AuthError):  # noqa: N818
    """Raised when a token is present but cannot be trusted.

    Subclasses carry a short ``reason`` that is rendered as
    ``invalid token (<reason>)``, mirroring the order of checks performed by
    ``GrantManager.validate_token``.
    """

    reason: str = "invalid"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or f"invalid token ({self.reason})")


class TokenParseError(InvalidToken):
    """Raised when a raw string is not a well-formed compact JWT.

    This is deliberately distinct from a valid-but-empty token: an unparsable
    token has no ``exp`` and would otherwise look like it never expires.
    """

    reason = "malformed"


class TokenMissing(InvalidToken):
    reason = "missing"


class TokenExpired(InvalidToken):
    reason = "expired"


class TokenNotSigned(InvalidToken):
    reason = "not signed"


class TokenWrongType(InvalidToken):
    reason = "wrong type"


class TokenStale(InvalidToken):
    """Raised when a token was issued before the revocation watermark."""

    reason = "stale token"


class TokenWrongIssuer(InvalidToken):
    reason = "wrong ISS"


class TokenWrongAudience(InvalidToken):
    reason = "wrong audience"


class TokenWrongAuthorizedParty(InvalidToken):
    reason = "authorized party should match client id"


class TokenMissingKid(InvalidToken):
    reason = "missing kid"


class TokenSignatureInvalid(InvalidToken):
    """Raised when the signature does not verify.

    ``reason`` is ``signature`` for a statically configured public key and
    ``public key signature`` for keys resolved from the issuer's JWKS, so the
    two paths can be told apart in logs.
    """

    reason = "signature"

    def __init__(self, message: str | None = None, *, reason: str | None = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(message)


# ============================================================================
# Key resolution and issuer trust
# ============================================================================


class KeyProviderError(AuthError):
    """Base class for signing-key and issuer-trust failures."""


class KeyNotFound(KeyProviderError):  # noqa: N818
    """Raised when no key with the requested ``kid`` is available.

    This happens when the key is absent after a forced JWKS refresh, or when a
    refresh was throttled. It is terminal for one validation attempt and does
    not imply the issuer is untrusted.
    """


class KeyFetchFailed(KeyProviderError):  # noqa: N818
    """Raised when the JWKS (or discovery document) could not be fetched."""


class IssuerNotAllowed(KeyProviderError):  # noqa: N818
    """Raised when no allow-spec matches the token issuer."""


class IssuerDenied(KeyProviderError):  # noqa: N818
    """Raised when a deny-spec matches the token issuer (deny wins over allow)."""


class MetadataError(KeyProviderError):
    """Raised when the discovery document is unusable or lacks an endpoint."""


# ============================================================================
# Grant lifecycle
# ============================================================================


class GrantError(AuthError):
    """Base class for grant acquisition, refresh and validation failures."""


class GrantValidationError(GrantError):
    """Raised by ``validate_grant`` wrapping the failing token's error."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Grant validation failed. Reason: {cause}")
        self.cause = cause


class RefreshTokenMissing(GrantError):  # noqa: N818
    def __init__(self) -> None:
        super().__init__("Unable to refresh without a refresh token")


class RefreshTokenExpired(GrantError):  # noqa: N818
    """The refresh token is expired: the session is over, do not retry."""

    def __init__(self) -> None:
        super().__init__("Unable to refresh with expired refresh token")


# ============================================================================
# Transport, authorization and admin callbacks
# ============================================================================


class HttpError(AuthError):
    """Raised when the IdP answers with a non-2xx status.

    Transient by nature; callers may retry the whole grant operation.

    Attributes:
        status: HTTP status code returned by the IdP.
        body: Raw response body.
    """

    def __init__(self, status: int, body: str, reason: str = "") -> None:
        super().__init__(f"{status}:{reason}:{body}")
        self.status = status
        self.body = body


class Forbidden(AuthError):  # noqa: N818
    """Raised when a valid token lacks the required roles or permissions.

    This is the only error that should result in 403.
    """

    status_code = 403


class AdminActionError(AuthError):
    """Raised when a verified admin callback carries an unexpected action."""

    status_code = 400

"""
OpenID Connect / OAuth2 grant adapter.

High-level flow
---------------
1. `GrantManager.obtain_*` posts to the realm token endpoint and builds a Grant.
2. `GrantManager.validate_grant` validates the access and ID tokens:
   - Ordered claim checks (expiry, type, revocation watermark, issuer, audience)
   - Signature verification with the key named by the header `kid`
3. `KeyStore` resolves keys per issuer, refetching the JWKS at most once per
   `min_time_between_jwks_requests` when an unknown `kid` appears (rotation).
4. `GrantManager.ensure_freshness` refreshes expired grants in place.
5. `OIDCExtension` protects Flask routes and serves the IdP's admin callbacks.

Security notes
--------------
- Never trust claims until signature verification succeeds.
- Only allow known algorithms (avoid algorithm confusion).
- Keys are only fetched for trusted issuers (`IssuerPolicy`).
- Throttle JWKS refresh attempts so attackers cannot DoS you by sending random `kid`s.

Example usage
-------------

.. code-block:: python

    from oidc_grants import AdapterConfig, GrantManager, InMemoryGrantStore, OIDCExtension

    config = AdapterConfig.from_file("keycloak.json")
    manager = GrantManager(config)

    oidc = OIDCExtension(manager, store=InMemoryGrantStore())
    oidc.init_app(app)

    @app.route("/protected")
    @oidc.require(roles=["realm:admin"])
    def protected_route():
        return {"subject": g.access_token.content["sub"]}
"""

# Admin callbacks
from .admin import AdminCallbacks

# Authorization
from .authorization import AuthzPermission, AuthzRequest, TokenAuthorizer, TokenRoles, UmaPermissions

# Configuration
from .config import AdapterConfig

# Errors
from .errors import (
    AdminActionError,
    AuthError,
    Forbidden,
    GrantError,
    GrantValidationError,
    HttpError,
    InvalidToken,
    IssuerDenied,
    IssuerNotAllowed,
    KeyFetchFailed,
    KeyNotFound,
    KeyProviderError,
    MetadataError,
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

# Extractors
from .extractors import BearerExtractor, CookieExtractor

# Flask extension
from .flask_extension import OIDCExtension

# Grants
from .grant import Grant
from .grant_manager import GrantManager

# Grant stores
from .grant_stores import InMemoryGrantStore, RedisGrantStore

# Issuer trust
from .issuer_trust import Exact, IssuerPolicy, Pattern, Predicate, TrustDecision, TrustSpec

# Key providers
from .key_providers import DiscoveryJwksSource, IssuerKeyProvider, RealmCertsSource

# Key store
from .key_store import KeyCacheEntry, KeyStore, jwk_to_pem

# Discovery
from .metadata import MetadataService

# Protocols
from .protocols import Claims, Extractor, GrantStore, Jwk, JwksSource, ViewFunc

# Refresh gate
from .refresh_gate import RefreshGate

# Signatures
from .signature import Signature, verify_signature

# Tokens
from .token import Token, parse_token

__all__ = [
    # Errors
    "AdminActionError",
    "AuthError",
    "Forbidden",
    "GrantError",
    "GrantValidationError",
    "HttpError",
    "InvalidToken",
    "IssuerDenied",
    "IssuerNotAllowed",
    "KeyFetchFailed",
    "KeyNotFound",
    "KeyProviderError",
    "MetadataError",
    "RefreshTokenExpired",
    "RefreshTokenMissing",
    "TokenExpired",
    "TokenMissing",
    "TokenMissingKid",
    "TokenNotSigned",
    "TokenParseError",
    "TokenSignatureInvalid",
    "TokenStale",
    "TokenWrongAudience",
    "TokenWrongAuthorizedParty",
    "TokenWrongIssuer",
    "TokenWrongType",
    # Protocols
    "Claims",
    "Extractor",
    "GrantStore",
    "Jwk",
    "JwksSource",
    "ViewFunc",
    # Configuration
    "AdapterConfig",
    # Tokens and grants
    "Token",
    "parse_token",
    "Grant",
    "GrantManager",
    # Issuer trust
    "Exact",
    "IssuerPolicy",
    "Pattern",
    "Predicate",
    "TrustDecision",
    "TrustSpec",
    # Keys
    "KeyCacheEntry",
    "KeyStore",
    "jwk_to_pem",
    "RefreshGate",
    "DiscoveryJwksSource",
    "IssuerKeyProvider",
    "RealmCertsSource",
    "MetadataService",
    # Signatures
    "Signature",
    "verify_signature",
    # Authorization
    "AuthzPermission",
    "AuthzRequest",
    "TokenAuthorizer",
    "TokenRoles",
    "UmaPermissions",
    # Grant stores
    "InMemoryGrantStore",
    "RedisGrantStore",
    # Extractors
    "BearerExtractor",
    "CookieExtractor",
    # Admin callbacks and Flask
    "AdminCallbacks",
    "OIDCExtension",
]

"""
Key provider implementations for resolving JWT signing keys.

This package contains the JwksSource implementations the KeyStore refreshes
from, and the issuer-trust-gated IssuerKeyProvider.
"""

from .issuer import IssuerKeyProvider
from .sources import DiscoveryJwksSource, RealmCertsSource

__all__ = ["DiscoveryJwksSource", "IssuerKeyProvider", "RealmCertsSource"]

"""Token extraction strategies from HTTP requests.

Implementations of the Extractor protocol:
- BearerExtractor: ``Authorization: Bearer <token>`` header (APIs, bearer-only clients)
- CookieExtractor: an HTTP cookie (browser sessions)

Never extract tokens from URL query parameters (visible in logs/history).
"""

from __future__ import annotations

from flask import request

from .errors import TokenMissing


class BearerExtractor:
    """Extracts a JWT from the Authorization header using the Bearer scheme.

    Security Notes:
        - Bearer tokens should only be sent over HTTPS
        - Tokens in headers are not vulnerable to CSRF (unlike cookies)
    """

    def extract(self) -> str:
        """Return the raw JWT (without the ``Bearer`` prefix).

        Raises:
            TokenMissing: Header missing, not Bearer, or empty.
        """
        auth_header = request.headers.get("Authorization", "").strip()

        if not auth_header:
            raise TokenMissing("Missing Authorization header")

        parts = auth_header.split(" ", 1)
        if len(parts) != 2:
            raise TokenMissing("Invalid Authorization header format (expected 'Bearer <token>')")

        scheme, token = parts
        if scheme.lower() != "bearer":
            raise TokenMissing("Invalid authorization scheme (expected 'Bearer')")

        token = token.strip()
        if not token:
            raise TokenMissing("Bearer token is empty")

        return token


class CookieExtractor:
    """Extracts a JWT from an HTTP cookie.

    Cookies must be HttpOnly and Secure, and cookie-based auth needs CSRF
    protection.
    """

    def __init__(self, cookie_name: str = "access_token") -> None:
        if not cookie_name or not cookie_name.strip():
            raise ValueError("cookie_name cannot be empty")
        self._name = cookie_name

    def extract(self) -> str:
        token = request.cookies.get(self._name)
        if not token:
            raise TokenMissing(f"Missing cookie '{self._name}'")
        return token

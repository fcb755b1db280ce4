"""Grant store implementations.

This module provides implementations of the GrantStore protocol for keeping
the raw grant JSON of a session between requests.

Implementations:
- InMemoryGrantStore: Simple in-process storage (good for dev/single-instance)
- RedisGrantStore: Distributed storage via Redis (good for multi-instance production)

Stored grants are raw token endpoint JSON. ``GrantManager.load_grant``
re-validates (and refreshes) them on every load, so a store never has to be
trusted with verified state.

Security Note:
    Grants contain refresh tokens. Keep the TTL no longer than the refresh
    token lifetime and never expose store contents to clients.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class _StoredGrant:
    """Internal store entry with TTL tracking."""

    raw: str
    expires_at: float


class InMemoryGrantStore:
    """In-process grant store keyed by session id.

    Expired entries are lazily removed on access.

    Example:
        ```python
        store = InMemoryGrantStore()
        store.set("session-1", grant.to_json(), ttl_seconds=1800)
        grant = await manager.load_grant(store, "session-1")
        ```
    """

    def __init__(self) -> None:
        self._store: dict[str, _StoredGrant] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> str | None:
        with self._lock:
            item = self._store.get(session_id)
            if not item:
                return None

            if time.time() >= item.expires_at:
                self._store.pop(session_id, None)
                return None

            return item.raw

    def set(self, session_id: str, raw_grant: str, ttl_seconds: int) -> None:
        if not session_id:
            raise ValueError("session_id cannot be empty")

        with self._lock:
            self._store[session_id] = _StoredGrant(raw=raw_grant, expires_at=time.time() + ttl_seconds)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._store.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RedisGrantStore:
    """Redis-backed grant store.

    Redis's native TTL handles expiration; keys are namespaced with ``prefix``.

    Dependencies:
        Requires redis package: pip install oidc-grants[redis]

    Example:
        ```python
        import redis

        client = redis.Redis(host="localhost", port=6379, decode_responses=True)
        store = RedisGrantStore(redis_client=client)
        ```

    Attributes:
        _client: Redis client instance (from redis package).
    """

    def __init__(self, redis_client: Any, prefix: str = "oidc-grant:") -> None:
        """Initialize Redis grant store.

        Args:
            redis_client: Redis client instance. Must support get(), setex()
                and delete(). The type is Any so any Redis-compatible client
                (redis-py, fakeredis, ...) can be passed.
            prefix: Key namespace.
        """
        self._client = redis_client
        self._prefix = prefix

    def _key(self, session_id: str) -> str:
        return self._prefix + session_id

    def get(self, session_id: str) -> str | None:
        data = self._client.get(self._key(session_id))
        if data is None:
            return None
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return data

    def set(self, session_id: str, raw_grant: str, ttl_seconds: int) -> None:
        """Store ``raw_grant`` with TTL.

        Raises:
            RuntimeError: If the Redis operation fails.
        """
        try:
            self._client.setex(self._key(session_id), ttl_seconds, raw_grant)
        except Exception as e:
            raise RuntimeError("Failed to store grant in Redis") from e

    def clear(self, session_id: str) -> None:
        try:
            self._client.delete(self._key(session_id))
        except Exception as e:
            raise RuntimeError("Failed to clear grant in Redis") from e

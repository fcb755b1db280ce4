"""Per-issuer throttle for forced JWKS re-fetches.

An unknown ``kid`` makes ``KeyStore`` re-fetch the issuer's key set. Anyone
can mint tokens with random ``kid`` values, so the store asks a ``RefreshGate``
first: the gate opens at most once per ``min_interval`` seconds and counts the
calls it turns away. Every ``alert_threshold``-th denial is logged as a warning.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Final

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL: Final[float] = 10
DEFAULT_ALERT_THRESHOLD: Final[int] = 5


class RefreshGate:
    """Opens at most once per ``min_interval`` seconds.

    Safe to share between threads. ``min_interval=0`` never throttles.

    Example:
        ```python
        gate = RefreshGate(min_interval=10, name=issuer)
        if gate.allow():
            keys = await source.fetch(issuer)
        ```
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
        name: str = "jwks",
    ) -> None:
        if min_interval < 0:
            raise ValueError(f"min_interval must not be negative, got {min_interval}")
        if alert_threshold < 1:
            raise ValueError(f"alert_threshold must be at least 1, got {alert_threshold}")

        self.min_interval = min_interval
        self.alert_threshold = alert_threshold
        self.name = name

        self._lock = threading.Lock()
        self._opens_at = 0.0
        self._denied = 0

    @property
    def retry_attempts(self) -> int:
        """Calls denied since the gate last opened."""
        with self._lock:
            return self._denied

    def allow(self) -> bool:
        """Open the gate if the interval has elapsed; otherwise count a denial."""
        now = time.time()

        with self._lock:
            if now >= self._opens_at:
                self._opens_at = now + self.min_interval
                self._denied = 0
                return True

            self._denied += 1
            if self._denied % self.alert_threshold == 0:
                logger.warning(
                    "JWKS refresh throttled for %s: %d denials since last refresh",
                    self.name,
                    self._denied,
                )
            return False

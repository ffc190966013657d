"""
Fixed-window throttling backoff.

After an HTTP 429 the upstream is left alone for a fixed cooldown. The same
policy applies to every request type.
"""

import logging
import threading
import time
from typing import Callable

from airsentinel.ingestion.metrics import BACKOFF_ACTIVATIONS

logger = logging.getLogger(__name__)


class BackoffController:

    def __init__(self, cooldown_s: float = 60.0, clock: Callable[[], float] = time.time):
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._deadline = 0.0
        self._lock = threading.Lock()

    def is_suppressed(self) -> bool:
        with self._lock:
            return self._clock() < self._deadline

    def remaining(self) -> float:
        """Seconds left in the current cooldown (0 when not suppressed)."""
        with self._lock:
            return max(0.0, self._deadline - self._clock())

    def trigger_backoff(self) -> None:
        with self._lock:
            self._deadline = self._clock() + self.cooldown_s
        BACKOFF_ACTIVATIONS.inc()
        logger.warning(f"Upstream throttled. Suppressing requests for {self.cooldown_s:.0f}s")

    def clear(self) -> None:
        with self._lock:
            was_active = self._deadline > self._clock()
            self._deadline = 0.0
        if was_active:
            logger.info("Upstream request succeeded, backoff cleared")

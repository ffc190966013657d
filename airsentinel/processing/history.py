"""
Per-aircraft history windows used by the detection rules.

Each window is an immutable tuple replaced wholesale on every insert
(copy-on-write), so readers never observe a partially trimmed window.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterator, Optional

from airsentinel.contracts.validation import AircraftState, Anomaly

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """
    An observed state tagged with the wall-clock ingestion time and the
    anomalies the rules raised for it.
    """
    state: AircraftState
    recorded_at: float
    anomalies: tuple = ()  # tuple[Anomaly, ...]


Window = tuple  # tuple[HistoryEntry, ...], oldest first


class HistoryStore:
    """
    Bounded, time-windowed history per icao24.

    Retention is applied on every insert: entries older than max_age_s go
    first, then the oldest entries beyond max_entries.
    """

    MAX_ENTRIES = 100
    MAX_AGE_S = 30 * 60
    LOCK_STRIPES = 64

    def __init__(
        self,
        max_entries: int = MAX_ENTRIES,
        max_age_s: float = MAX_AGE_S,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.max_age_s = max_age_s
        self._clock = clock
        self._windows: Dict[str, Window] = {}
        # Striped so the lock table stays bounded however many aircraft pass through
        self._aircraft_locks = tuple(threading.Lock() for _ in range(self.LOCK_STRIPES))
        self._lock = threading.Lock()

    def record(self, state: AircraftState) -> Window:
        """Append one observation and return the committed, trimmed window."""
        now = self._clock()
        entry = HistoryEntry(state=state, recorded_at=now)

        with self._lock:
            current = self._windows.get(state.icao24, ())
            window = self._trim(current + (entry,), now)
            self._windows[state.icao24] = window
        return window

    def window(self, icao24: str) -> Window:
        """Ordered entries for icao24, most recent last. Empty if unseen."""
        with self._lock:
            return self._windows.get(icao24.lower(), ())

    def latest(self, icao24: str) -> Optional[HistoryEntry]:
        """Most recent entry still inside the age bound, if any."""
        window = self.window(icao24)
        if window and window[-1].recorded_at > self._clock() - self.max_age_s:
            return window[-1]
        return None

    def annotate_latest(self, icao24: str, anomalies: list[Anomaly]) -> None:
        """Attach detection results to the most recent entry."""
        icao24 = icao24.lower()
        with self._lock:
            window = self._windows.get(icao24)
            if window:
                last = replace(window[-1], anomalies=tuple(anomalies))
                self._windows[icao24] = window[:-1] + (last,)

    @contextmanager
    def aircraft_lock(self, icao24: str) -> Iterator[None]:
        """Serialize record-then-detect sequences for one aircraft."""
        lock = self._aircraft_locks[hash(icao24) % self.LOCK_STRIPES]
        with lock:
            yield

    def prune_expired(self) -> int:
        """
        Apply the age bound to every window and forget empty ones.

        An emptied window reads exactly like an unseen aircraft.
        Returns the number of aircraft forgotten.
        """
        now = self._clock()
        removed = 0
        with self._lock:
            for icao24 in list(self._windows):
                window = self._trim(self._windows[icao24], now)
                if window:
                    self._windows[icao24] = window
                else:
                    del self._windows[icao24]
                    removed += 1
        if removed:
            logger.debug(f"Pruned history for {removed} aircraft")
        return removed

    def reset(self) -> None:
        """Forget all history."""
        with self._lock:
            self._windows.clear()

    def tracked(self) -> int:
        with self._lock:
            return len(self._windows)

    def _trim(self, window: Window, now: float) -> Window:
        cutoff = now - self.max_age_s
        window = tuple(e for e in window if e.recorded_at > cutoff)
        if len(window) > self.max_entries:
            window = window[-self.max_entries:]
        return window

"""
AirSentinel service: owns the acquisition client, history and detector.

This is the pull interface offered to collaborators (dashboard, HTTP hub,
scheduled poller). Separate instances share nothing.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests

from airsentinel.config import Settings
from airsentinel.contracts.validation import (
    Anomaly,
    AnomalyStats,
    BoundingBox,
    EnrichedAircraft,
    FlightTrack,
)
from airsentinel.exceptions import NotFound
from airsentinel.ingestion.opensky_client import OpenSkyClient
from airsentinel.processing.anomaly_detector import AnomalyDetector, anomaly_stats
from airsentinel.processing.history import HistoryStore

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    aircraft: list[EnrichedAircraft] = field(default_factory=list)
    anomalies: list[Anomaly] = field(default_factory=list)
    stats: AnomalyStats = field(default_factory=AnomalyStats)
    total: int = 0  # aircraft returned upstream, before any limit


class AirSentinelService:

    def __init__(self, client: OpenSkyClient, detector: AnomalyDetector, recent_limit: int = 500):
        if recent_limit < 1:
            raise ValueError("recent_limit must be at least 1")
        self.client = client
        self.detector = detector
        self._recent: deque = deque(maxlen=recent_limit)
        self._recent_ids: set[str] = set()
        self._recent_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "AirSentinelService":
        client = OpenSkyClient.from_settings(settings, session=session, clock=clock, sleep=sleep)
        history = HistoryStore(
            max_entries=settings.history_max_entries,
            max_age_s=settings.history_max_age_s,
            clock=clock,
        )
        return cls(client, AnomalyDetector(history=history), recent_limit=settings.recent_anomalies_limit)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll(self, bbox: Optional[BoundingBox] = None, limit: Optional[int] = None) -> PollResult:
        """One acquisition + detection cycle over all states or one area."""
        if bbox is None:
            states = self.client.get_all_states()
        else:
            states = self.client.get_states_in_bbox(bbox)
        return self._process(states, limit)

    def poll_radius(self, latitude: float, longitude: float, radius_nm: float, limit: Optional[int] = None) -> PollResult:
        states = self.client.get_states_in_radius(latitude, longitude, radius_nm)
        return self._process(states, limit)

    def _process(self, states: list, limit: Optional[int]) -> PollResult:
        selected = states[:limit] if limit is not None else states
        anomalies = self.detector.detect_batch(selected)
        self._remember(anomalies)
        self.detector.history.prune_expired()
        self.client.cache.evict_expired()

        logger.info(f"Evaluated {len(selected)} aircraft, {len(anomalies)} anomalies")
        return PollResult(
            aircraft=self.detector.enrich(selected, anomalies),
            anomalies=anomalies,
            stats=anomaly_stats(anomalies),
            total=len(states),
        )

    # ------------------------------------------------------------------
    # Single aircraft
    # ------------------------------------------------------------------

    def flight(self, icao24: str) -> tuple[EnrichedAircraft, list[Anomaly]]:
        """
        On-demand lookup of one aircraft with its anomalies.

        Raises:
            NotFound: the aircraft is not currently transmitting.
        """
        icao24 = icao24.strip().lower()
        states = self.client.get_states_by_icao24([icao24])
        state = next((s for s in states if s.icao24 == icao24), None)
        if state is None:
            raise NotFound(f"Aircraft {icao24} not found or not currently transmitting")

        anomalies = self.detector.detect(state)
        self._remember(anomalies)
        return self.detector.enrich([state], anomalies)[0], anomalies

    def track(self, icao24: str, time: Optional[int] = None) -> FlightTrack:
        track = self.client.get_track(icao24, time=time)
        if track is None:
            raise NotFound(f"No track data available for {icao24}")
        return track

    def track_anomalies(self, icao24: str, time: Optional[int] = None) -> list[Anomaly]:
        return self.detector.detect_on_track(self.track(icao24, time=time))

    # ------------------------------------------------------------------
    # Recent anomalies
    # ------------------------------------------------------------------

    def _remember(self, anomalies: list[Anomaly]) -> None:
        """Store newly raised anomalies; ones replayed for a repeated observation are skipped."""
        with self._recent_lock:
            for anomaly in anomalies:
                if anomaly.id in self._recent_ids:
                    continue
                if len(self._recent) == self._recent.maxlen:
                    self._recent_ids.discard(self._recent[0].id)
                self._recent.append(anomaly)
                self._recent_ids.add(anomaly.id)

    def recent_anomalies(
        self,
        severity: Optional[str] = None,
        anomaly_type: Optional[str] = None,
        limit: int = 50,
    ) -> list[Anomaly]:
        """Most recently detected anomalies first, optionally filtered."""
        with self._recent_lock:
            items = list(reversed(self._recent))

        if severity:
            items = [a for a in items if a.severity == severity]
        if anomaly_type:
            items = [a for a in items if a.type == anomaly_type]

        items.sort(key=lambda a: a.detected_at, reverse=True)
        return items[:limit]

    def get_anomaly(self, anomaly_id: str) -> Anomaly:
        with self._recent_lock:
            for anomaly in self._recent:
                if anomaly.id == anomaly_id:
                    return anomaly
        raise NotFound(f"Anomaly {anomaly_id} not found")

    def stats(self) -> AnomalyStats:
        with self._recent_lock:
            return anomaly_stats(list(self._recent))

"""
Batch orchestration of the detection rules.

Every aircraft with a position fix is recorded into its history window and
then run through the fixed rule pipeline. Results from a batch are ordered
by severity (critical first), keeping arrival order within a severity.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from airsentinel.contracts.constants import (
    FLIGHT_STATUS_ANOMALY,
    FLIGHT_STATUS_NORMAL,
    SEVERITY_ORDER,
)
from airsentinel.contracts.validation import (
    AircraftState,
    Anomaly,
    AnomalyStats,
    EnrichedAircraft,
    FlightTrack,
)
from airsentinel.processing.history import HistoryStore, Window
from airsentinel.processing.metrics import (
    AIRCRAFT_EVALUATED,
    AIRCRAFT_SKIPPED,
    ANOMALIES_DETECTED,
    BATCH_LATENCY,
    DETECTOR_ERRORS,
    DUPLICATE_OBSERVATIONS,
    TRACKED_AIRCRAFT,
)
from airsentinel.processing.rules import Detector, default_rules, utc_now

logger = logging.getLogger(__name__)


def sort_by_severity(anomalies: Iterable[Anomaly]) -> list[Anomaly]:
    """Stable sort: critical, high, medium, low."""
    return sorted(anomalies, key=lambda a: SEVERITY_ORDER[a.severity])


def anomaly_stats(anomalies: Iterable[Anomaly]) -> AnomalyStats:
    """Counts by severity and by type."""
    by_severity = {severity: 0 for severity in SEVERITY_ORDER}
    by_type: dict[str, int] = {}

    for anomaly in anomalies:
        by_severity[anomaly.severity] += 1
        by_type[anomaly.type] = by_type.get(anomaly.type, 0) + 1

    return AnomalyStats(
        total=sum(by_severity.values()),
        by_type=by_type,
        **by_severity,
    )


def track_to_states(track: FlightTrack) -> list[AircraftState]:
    """Pseudo state vectors for each track waypoint that has a position."""
    states = []
    for point in track.path:
        if point.latitude is None or point.longitude is None:
            continue
        states.append(AircraftState(
            icao24=track.icao24,
            callsign=track.callsign,
            origin_country="",
            time_position=point.time,
            last_contact=point.time,
            longitude=point.longitude,
            latitude=point.latitude,
            baro_altitude=point.baro_altitude,
            on_ground=point.on_ground,
            true_track=point.true_track,
        ))
    return states


class AnomalyDetector:
    """Runs the rule pipeline over aircraft, one history window per icao24."""

    def __init__(
        self,
        history: Optional[HistoryStore] = None,
        rules: Optional[Sequence[Detector]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.history = history if history is not None else HistoryStore()
        self.rules = tuple(rules) if rules is not None else default_rules(clock)

    def evaluate1(self, state: AircraftState) -> list[Anomaly]:
        """
        Record one observation and run every rule against it.

        Aircraft without latitude or longitude are skipped entirely. A state
        whose last_contact is not newer than the recorded one (a cached
        response polled again) is not recorded; the anomalies already raised
        for that observation are returned unchanged.
        """
        if not state.has_position:
            AIRCRAFT_SKIPPED.inc()
            return []

        with self.history.aircraft_lock(state.icao24):
            latest = self.history.latest(state.icao24)
            if latest is not None and state.last_contact <= latest.state.last_contact:
                DUPLICATE_OBSERVATIONS.inc()
                return list(latest.anomalies)

            window = self.history.record(state)
            anomalies = self._run_rules(state, window)
            self.history.annotate_latest(state.icao24, anomalies)

        AIRCRAFT_EVALUATED.inc()
        for anomaly in anomalies:
            ANOMALIES_DETECTED.labels(anomaly_type=anomaly.type, severity=anomaly.severity).inc()
        return anomalies

    def evaluate(self, states: Iterable[AircraftState]) -> list[Anomaly]:
        """Detect anomalies for a batch, sorted by severity."""
        anomalies: list[Anomaly] = []
        with BATCH_LATENCY.time():
            for state in states:
                anomalies.extend(self.evaluate1(state))

        TRACKED_AIRCRAFT.set(self.history.tracked())
        return sort_by_severity(anomalies)

    # Collaborator-facing names
    detect = evaluate1
    detect_batch = evaluate

    def detect_on_track(self, track: FlightTrack) -> list[Anomaly]:
        """
        Replay a historical track through the pipeline, waypoint by waypoint.

        The replay uses its own history window so live tracking of the same
        aircraft is left untouched. Results stay in chronological order.
        """
        replay = AnomalyDetector(
            history=HistoryStore(self.history.max_entries, self.history.max_age_s),
            rules=self.rules,
        )
        anomalies: list[Anomaly] = []
        for state in track_to_states(track):
            anomalies.extend(replay.evaluate1(state))

        logger.info(
            f"Track replay for {track.icao24}: {len(track.path)} points, "
            f"{len(anomalies)} anomalies"
        )
        return anomalies

    def enrich(self, states: Iterable[AircraftState], anomalies: Iterable[Anomaly]) -> list[EnrichedAircraft]:
        """Attach status and anomaly types from a detection pass to each aircraft."""
        types_by_aircraft: dict[str, list[str]] = {}
        for anomaly in anomalies:
            types = types_by_aircraft.setdefault(anomaly.icao24, [])
            if anomaly.type not in types:
                types.append(anomaly.type)

        enriched = []
        for state in states:
            types = types_by_aircraft.get(state.icao24, [])
            enriched.append(EnrichedAircraft(
                **state.model_dump(),
                status=FLIGHT_STATUS_ANOMALY if types else FLIGHT_STATUS_NORMAL,
                anomaly_types=types,
            ))
        return enriched

    def _run_rules(self, state: AircraftState, window: Window) -> list[Anomaly]:
        anomalies = []
        for rule in self.rules:
            try:
                anomaly = rule.detect(state, window)
            except Exception:
                # One failing rule must not hide the others
                DETECTOR_ERRORS.labels(detector=rule.name).inc()
                logger.exception(f"Error in {rule.name} detector for {state.icao24}")
                continue
            if anomaly is not None:
                anomalies.append(anomaly)
        return anomalies

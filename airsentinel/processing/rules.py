"""
Anomaly detection rules.

Each rule looks at the current state plus the aircraft's history window and
returns at most one Anomaly. Rules keep no state between calls; a missing
optional field simply means the rule does not fire.
"""

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from airsentinel.contracts.constants import (
    ANOMALY_TYPE_ALTITUDE_DROP,
    ANOMALY_TYPE_EMERGENCY_SQUAWK,
    ANOMALY_TYPE_GO_AROUND,
    ANOMALY_TYPE_HOLDING_PATTERN,
    ANOMALY_TYPE_RAPID_DESCENT,
    ANOMALY_TYPE_UNUSUAL_SPEED,
    EMERGENCY_SQUAWKS,
    FEET_PER_METER,
    FPM_PER_MPS,
    KNOTS_PER_MPS,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
)
from airsentinel.contracts.validation import AircraftState, Anomaly, AnomalyDetails, Location
from airsentinel.processing.history import Window

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_anomaly_id() -> str:
    """ANO-<epoch ms>-<9 random base36 chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"ANO-{int(time.time() * 1000)}-{suffix}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_heading_delta(delta: float) -> float:
    """Map a heading difference into (-180, 180]."""
    delta = delta % 360
    if delta > 180:
        delta -= 360
    return delta


class Detector:
    """Base class for detection rules."""

    name = "detector"

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def detect(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        raise NotImplementedError

    def _create_anomaly(
        self,
        current: AircraftState,
        anomaly_type: str,
        severity: str,
        details: AnomalyDetails,
    ) -> Anomaly:
        """Create anomaly record."""
        # 0/0 stands in for an unknown fix
        location = Location(
            latitude=current.latitude if current.latitude is not None else 0.0,
            longitude=current.longitude if current.longitude is not None else 0.0,
        )
        return Anomaly(
            id=new_anomaly_id(),
            icao24=current.icao24,
            callsign=current.callsign,
            type=anomaly_type,
            severity=severity,
            detected_at=self._clock(),
            location=location,
            details=details,
        )


class EmergencySquawkDetector(Detector):
    """Transponder set to 7500, 7600 or 7700."""

    name = "emergency_squawk"

    def detect(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        squawk = (current.squawk or "").strip()
        meaning = EMERGENCY_SQUAWKS.get(squawk)
        if meaning is None:
            return None

        return self._create_anomaly(
            current, ANOMALY_TYPE_EMERGENCY_SQUAWK, SEVERITY_CRITICAL,
            AnomalyDetails(
                description=f"Emergency squawk {squawk}: {meaning}",
                metrics={"squawk_code": float(squawk)},
            )
        )


class AltitudeDetector(Detector):
    """
    Rapid descent from the reported vertical rate, or a sudden altitude drop
    derived from the two most recent samples.
    """

    name = "altitude"

    CRITICAL_VERTICAL_RATE_FPM = -4000.0
    RAPID_ALTITUDE_DROP_FPM = -3000.0

    def __init__(
        self,
        critical_vertical_rate_fpm: float = CRITICAL_VERTICAL_RATE_FPM,
        rapid_altitude_drop_fpm: float = RAPID_ALTITUDE_DROP_FPM,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(clock)
        self.critical_vertical_rate_fpm = critical_vertical_rate_fpm
        self.rapid_altitude_drop_fpm = rapid_altitude_drop_fpm

    def detect(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        if current.on_ground:
            return None

        anomaly = self._check_vertical_rate(current)
        if anomaly is None:
            anomaly = self._check_altitude_drop(current, history)
        return anomaly

    def _check_vertical_rate(self, current: AircraftState) -> Optional[Anomaly]:
        if current.vertical_rate is None:
            return None

        vertical_rate_fpm = current.vertical_rate * FPM_PER_MPS
        if vertical_rate_fpm >= self.critical_vertical_rate_fpm:
            return None

        metrics = {"vertical_rate_fpm": vertical_rate_fpm}
        if current.baro_altitude is not None:
            metrics["current_altitude_ft"] = current.baro_altitude * FEET_PER_METER

        return self._create_anomaly(
            current, ANOMALY_TYPE_RAPID_DESCENT, SEVERITY_HIGH,
            AnomalyDetails(
                description=f"Rapid descent detected: {round(vertical_rate_fpm)} ft/min",
                metrics=metrics,
                current_value=vertical_rate_fpm,
            )
        )

    def _check_altitude_drop(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        if len(history) < 2 or current.baro_altitude is None:
            return None

        previous = history[-2].state
        if previous.baro_altitude is None:
            return None

        minutes = (current.last_contact - previous.last_contact) / 60
        if minutes <= 0:
            return None

        altitude_change_ft = (current.baro_altitude - previous.baro_altitude) * FEET_PER_METER
        rate_fpm = altitude_change_ft / minutes
        if rate_fpm >= self.rapid_altitude_drop_fpm:
            return None

        return self._create_anomaly(
            current, ANOMALY_TYPE_ALTITUDE_DROP, SEVERITY_HIGH,
            AnomalyDetails(
                description=(
                    f"Sudden altitude drop: {round(altitude_change_ft)} ft "
                    f"in {minutes:.1f} minutes"
                ),
                metrics={
                    "altitude_change_ft": altitude_change_ft,
                    "rate_of_change_fpm": rate_fpm,
                },
                previous_value=previous.baro_altitude * FEET_PER_METER,
                current_value=current.baro_altitude * FEET_PER_METER,
            )
        )


class HoldingPatternDetector(Detector):
    """
    Repeated orbits: the signed heading change accumulated over the recent
    window adds up to several full circles.
    """

    name = "holding_pattern"

    MIN_SAMPLES = 20
    WINDOW_SIZE = 30
    HOLDING_TURNS = 2.0  # full circles
    SIGNIFICANT_TURN_DEG = 30.0

    def __init__(
        self,
        holding_turns: float = HOLDING_TURNS,
        min_samples: int = MIN_SAMPLES,
        window_size: int = WINDOW_SIZE,
        significant_turn_deg: float = SIGNIFICANT_TURN_DEG,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(clock)
        self.holding_turns = holding_turns
        self.min_samples = min_samples
        self.window_size = window_size
        self.significant_turn_deg = significant_turn_deg

    def detect(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        if current.on_ground or len(history) < self.min_samples:
            return None

        total_heading_change, turn_count = self.accumulate_turns(
            [entry.state.true_track for entry in history[-self.window_size:]],
            self.significant_turn_deg,
        )
        full_circles = abs(total_heading_change) / 360
        if full_circles < self.holding_turns:
            return None

        return self._create_anomaly(
            current, ANOMALY_TYPE_HOLDING_PATTERN, SEVERITY_MEDIUM,
            AnomalyDetails(
                description=(
                    f"Aircraft appears to be in holding pattern "
                    f"({full_circles:.1f} orbits detected)"
                ),
                metrics={
                    "orbits_detected": full_circles,
                    "turn_count": float(turn_count),
                    "total_heading_change": total_heading_change,
                },
            )
        )

    @staticmethod
    def accumulate_turns(headings: list, significant_turn_deg: float = SIGNIFICANT_TURN_DEG) -> tuple[float, int]:
        """
        Sum signed heading deltas between consecutive samples.

        Unknown headings break the chain: the next known heading starts a
        new pair instead of being compared across the gap.

        Returns:
            (total_signed_change_deg, significant_turn_count)
        """
        total = 0.0
        turns = 0
        last = headings[0] if headings else None
        for heading in headings[1:]:
            if last is not None and heading is not None:
                delta = normalize_heading_delta(heading - last)
                total += delta
                if abs(delta) > significant_turn_deg:
                    turns += 1
            last = heading
        return total, turns


class SpeedDetector(Detector):
    """Ground speed far above cruise, or very slow at altitude."""

    name = "unusual_speed"

    UNUSUALLY_FAST_KTS = 600.0
    UNUSUALLY_SLOW_KTS = 80.0
    SLOW_MIN_ALTITUDE_M = 3000.0

    def __init__(
        self,
        unusually_fast_kts: float = UNUSUALLY_FAST_KTS,
        unusually_slow_kts: float = UNUSUALLY_SLOW_KTS,
        slow_min_altitude_m: float = SLOW_MIN_ALTITUDE_M,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(clock)
        self.unusually_fast_kts = unusually_fast_kts
        self.unusually_slow_kts = unusually_slow_kts
        self.slow_min_altitude_m = slow_min_altitude_m

    def detect(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        if current.on_ground or current.velocity is None:
            return None

        speed_kts = current.velocity * KNOTS_PER_MPS

        if speed_kts > self.unusually_fast_kts:
            return self._create_anomaly(
                current, ANOMALY_TYPE_UNUSUAL_SPEED, SEVERITY_MEDIUM,
                AnomalyDetails(
                    description=f"Unusually high ground speed: {round(speed_kts)} knots",
                    metrics={"ground_speed_kts": speed_kts},
                    current_value=speed_kts,
                )
            )

        altitude = current.baro_altitude
        if speed_kts < self.unusually_slow_kts and altitude is not None and altitude > self.slow_min_altitude_m:
            # Could be a turboprop or helicopter, hence low severity
            altitude_ft = altitude * FEET_PER_METER
            return self._create_anomaly(
                current, ANOMALY_TYPE_UNUSUAL_SPEED, SEVERITY_LOW,
                AnomalyDetails(
                    description=(
                        f"Unusually low ground speed at altitude: {round(speed_kts)} knots "
                        f"at {round(altitude_ft)} ft"
                    ),
                    metrics={"ground_speed_kts": speed_kts, "altitude_ft": altitude_ft},
                    current_value=speed_kts,
                )
            )

        return None


class GoAroundDetector(Detector):
    """
    Detect go-around: descent, then a low point, then a climb-out.

    Pattern over the trailing window (recomputed on every call):
    1. net descent between consecutive samples
    2. altitude below LOW_ALTITUDE_FT while descending
    3. climb after the low point, with the current vertical rate positive
    """

    name = "go_around"

    MIN_SAMPLES = 10
    WINDOW_SIZE = 15
    LOW_ALTITUDE_FT = 1500.0
    CLIMB_NOISE_MPS = 2.0

    def __init__(
        self,
        min_samples: int = MIN_SAMPLES,
        window_size: int = WINDOW_SIZE,
        low_altitude_ft: float = LOW_ALTITUDE_FT,
        climb_noise_mps: float = CLIMB_NOISE_MPS,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(clock)
        self.min_samples = min_samples
        self.window_size = window_size
        self.low_altitude_ft = low_altitude_ft
        self.climb_noise_mps = climb_noise_mps

    def detect(self, current: AircraftState, history: Window) -> Optional[Anomaly]:
        if len(history) < self.min_samples:
            return None
        if current.vertical_rate is None or current.vertical_rate <= self.climb_noise_mps:
            return None

        recent = [entry.state.baro_altitude for entry in history[-self.window_size:]]

        was_descending = False
        reached_low_altitude = False
        climbing_after_low = False
        lowest_altitude_ft = float("inf")

        for prev, curr in zip(recent, recent[1:]):
            if prev is None or curr is None:
                continue

            altitude_ft = curr * FEET_PER_METER
            lowest_altitude_ft = min(lowest_altitude_ft, altitude_ft)

            if curr < prev:
                was_descending = True
            if was_descending and altitude_ft < self.low_altitude_ft:
                reached_low_altitude = True
            if reached_low_altitude and curr > prev:
                climbing_after_low = True

        if not (was_descending and reached_low_altitude and climbing_after_low):
            return None

        return self._create_anomaly(
            current, ANOMALY_TYPE_GO_AROUND, SEVERITY_MEDIUM,
            AnomalyDetails(
                description=f"Possible go-around detected. Lowest altitude: {round(lowest_altitude_ft)} ft",
                metrics={
                    "lowest_altitude_ft": lowest_altitude_ft,
                    "current_vertical_rate_fpm": current.vertical_rate * FPM_PER_MPS,
                },
            )
        )


def default_rules(clock: Callable[[], datetime] = utc_now) -> tuple[Detector, ...]:
    """The fixed detection pipeline, in evaluation order."""
    return (
        EmergencySquawkDetector(clock=clock),
        AltitudeDetector(clock=clock),
        HoldingPatternDetector(clock=clock),
        SpeedDetector(clock=clock),
        GoAroundDetector(clock=clock),
    )

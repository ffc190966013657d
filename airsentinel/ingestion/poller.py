#!/usr/bin/env python3
"""
AirSentinel Poller - polls OpenSky and runs anomaly detection every cycle.

Modes:
- live: poll the OpenSky API in real time
- replay: feed recorded upstream responses from a JSONL file for demos/tests

Replay file format: one recorded /states/all response per line,
{"time": <epoch seconds>, "states": [[...18 fields...], ...]}.
"""

import json
import logging
import os
import sys
import time
from typing import Callable, Iterator, Optional

from prometheus_client import Gauge, start_http_server

from airsentinel.config import Settings
from airsentinel.contracts.constants import MODE_REPLAY
from airsentinel.contracts.validation import Anomaly, BoundingBox
from airsentinel.exceptions import AirSentinelError
from airsentinel.ingestion.normalizer import parse_states
from airsentinel.processing.anomaly_detector import AnomalyDetector
from airsentinel.service import AirSentinelService

logger = logging.getLogger(__name__)

CURRENT_AIRCRAFT = Gauge('poller_current_aircraft', 'Aircraft in last poll')

MAX_REPLAY_GAP_S = 60


# ============================================
# Replay Mode
# ============================================

def replay_iterator(
    filepath: str,
    speed: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[dict]:
    """
    Read recorded JSONL responses and yield them with timing preserved.

    Timing logic:
    - The "time" field of each response sets its position in the replay
    - Gaps between consecutive responses are divided by `speed`
    - Gaps are capped at 60 seconds; out-of-order responses are yielded immediately
    """
    logger.info(f"Replay mode: reading from {filepath} at {speed}x speed")

    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Replay file not found: {filepath}")

    last_ts = None

    with open(filepath, 'r') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue

            try:
                response = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON on line {line_num}: {e}")
                continue

            if not isinstance(response, dict):
                logger.warning(f"Line {line_num}: expected an object, skipping")
                continue

            ts = response.get("time")
            if not isinstance(ts, (int, float)):
                logger.debug(f"Line {line_num}: No timestamp, yielding immediately")
                yield response
                continue

            if last_ts is not None:
                if ts >= last_ts:
                    delay_seconds = (ts - last_ts) / speed
                    if delay_seconds > MAX_REPLAY_GAP_S:
                        logger.warning(
                            f"Large time gap detected: {delay_seconds:.1f}s "
                            f"(capped at {MAX_REPLAY_GAP_S}s). Timestamp jump: {last_ts} -> {ts}"
                        )
                        delay_seconds = MAX_REPLAY_GAP_S
                    # Only sleep if there's a meaningful delay (> 10ms)
                    if delay_seconds > 0.01:
                        sleep(delay_seconds)
                else:
                    logger.warning(
                        f"Out-of-order timestamp detected at line {line_num}: "
                        f"{ts} < {last_ts}. Yielding immediately."
                    )
                    yield response
                    continue

            last_ts = ts
            yield response


def run_replay(
    detector: AnomalyDetector,
    filepath: str,
    speed: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Anomaly]:
    """Replay a recording through normalization and detection."""
    detected: list[Anomaly] = []
    cycles = 0

    for response in replay_iterator(filepath, speed, sleep=sleep):
        states, _ = parse_states(response.get("states"))
        anomalies = detector.detect_batch(states)
        detected.extend(anomalies)
        cycles += 1
        CURRENT_AIRCRAFT.set(len(states))
        _log_anomalies(anomalies)

    logger.info(f"Replay complete. {cycles} responses, {len(detected)} anomalies")
    return detected


# ============================================
# Live Mode
# ============================================

def run_live(
    service: AirSentinelService,
    bbox: Optional[BoundingBox],
    interval_s: float,
    max_cycles: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll until interrupted (or for max_cycles cycles)."""
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        loop_start = time.time()
        cycles += 1

        try:
            result = service.poll(bbox=bbox)
        except AirSentinelError as e:
            # This cycle fails, the next one tries again
            logger.error(f"Poll cycle {cycles} failed: {e}")
        else:
            CURRENT_AIRCRAFT.set(result.total)
            _log_anomalies(result.anomalies)
            logger.info(
                f"Cycle {cycles}: {result.total} aircraft, "
                f"{result.stats.total} anomalies "
                f"({result.stats.critical} critical, {result.stats.high} high)"
            )

        if max_cycles is not None and cycles >= max_cycles:
            break

        # Wait for next poll
        elapsed = time.time() - loop_start
        sleep_time = max(0, interval_s - elapsed)
        if sleep_time > 0:
            sleep(sleep_time)


def _log_anomalies(anomalies: list[Anomaly]) -> None:
    for anomaly in anomalies:
        logger.warning(
            f"[{anomaly.severity.upper()}] {anomaly.type} "
            f"{anomaly.callsign or anomaly.icao24}: {anomaly.details.description}"
        )


# ============================================
# Main
# ============================================

def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )

    settings = Settings.from_env()
    bbox = BoundingBox(**settings.poll_bbox) if settings.poll_bbox else None

    logger.info("=" * 50)
    logger.info("AirSentinel Poller")
    logger.info(f"Mode: {settings.poller_mode}")
    logger.info(f"Bbox: {bbox.cache_key() if bbox else 'worldwide'}")
    logger.info(f"Poll interval: {settings.poll_interval_s}s")
    logger.info("=" * 50)

    start_http_server(settings.metrics_port)
    logger.info(f"Prometheus metrics available on :{settings.metrics_port}")

    service = AirSentinelService.from_settings(settings)

    if settings.poller_mode == MODE_REPLAY:
        try:
            run_replay(service.detector, settings.replay_file, settings.replay_speed)
        except FileNotFoundError as e:
            logger.error(str(e))
            sys.exit(1)
        return

    if settings.client_id and settings.client_secret:
        logger.info(
            f"Using OAuth2 client credentials flow with client_id: {settings.client_id[:8]}..."
        )
    elif settings.username and settings.password:
        logger.info("Using HTTP Basic credentials")
    else:
        logger.warning(
            "OpenSky credentials not provided. Using anonymous access (rate-limited). "
            "Set OPENSKY_CLIENT_ID and OPENSKY_CLIENT_SECRET for authenticated access."
        )

    try:
        run_live(service, bbox, settings.poll_interval_s)
    except KeyboardInterrupt:
        logger.info("Poller stopped")


if __name__ == "__main__":
    main()

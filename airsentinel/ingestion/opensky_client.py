"""
OpenSky Network client: cached, rate-limited, throttling-aware reads.

Best-effort reads (all states, bounding box, radius) degrade to stale cache
or an empty list when the upstream is throttling or failing. Precise lookups
(ICAO24 set, track, airport arrivals/departures) degrade only on throttling;
upstream failures propagate to the caller.
"""

import logging
import time
from typing import Any, Callable, Iterable, Optional

import requests

from airsentinel.config import Settings
from airsentinel.contracts.constants import CACHE_KEY_ALL_STATES, CACHE_KEY_ICAO24_PREFIX
from airsentinel.contracts.validation import AircraftState, BoundingBox, FlightTrack, GeoCircle
from airsentinel.exceptions import NotFound, Throttled, UpstreamUnavailable
from airsentinel.geo import circle_to_bbox, within_radius
from airsentinel.ingestion.auth import CredentialProvider
from airsentinel.ingestion.backoff import BackoffController
from airsentinel.ingestion.cache import ResponseCache
from airsentinel.ingestion.fetch_gate import FetchGate, UpstreamRequest
from airsentinel.ingestion.normalizer import parse_states, parse_track

logger = logging.getLogger(__name__)


def _states_from_body(body: Any) -> list[AircraftState]:
    if not isinstance(body, dict):
        raise UpstreamUnavailable(f"Unexpected states body of type {type(body).__name__}")
    states, _ = parse_states(body.get("states"))
    return states


def _list_from_body(body: Any) -> list:
    if not isinstance(body, list):
        raise UpstreamUnavailable(f"Unexpected flights body of type {type(body).__name__}")
    return body


class OpenSkyClient:
    """Client for the OpenSky Network REST API."""

    def __init__(
        self,
        gate: FetchGate,
        cache: ResponseCache,
        backoff: BackoffController,
        api_url: str = "https://opensky-network.org/api",
        request_budget_s: Optional[float] = None,
    ):
        self.gate = gate
        self.cache = cache
        self.backoff = backoff
        self.api_url = api_url.rstrip("/")
        self.request_budget_s = request_budget_s

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "OpenSkyClient":
        """Wire cache, backoff, credentials and fetch gate from settings."""
        session = session or requests.Session()
        cache = ResponseCache(settings.cache_fresh_ttl_s, settings.cache_stale_ttl_s, clock=clock)
        backoff = BackoffController(settings.backoff_s, clock=clock)
        credentials = CredentialProvider(
            session,
            settings.opensky_token_url,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            username=settings.username,
            password=settings.password,
            refresh_margin_s=settings.token_refresh_margin_s,
            timeout_s=settings.request_timeout_s,
            clock=clock,
        )
        gate = FetchGate(
            session,
            credentials,
            cache,
            backoff,
            min_interval_s=settings.min_request_interval_s,
            request_timeout_s=settings.request_timeout_s,
            clock=clock,
            sleep=sleep,
        )
        return cls(gate, cache, backoff, api_url=settings.opensky_api_url)

    # ------------------------------------------------------------------
    # State vectors
    # ------------------------------------------------------------------

    def get_all_states(self, timeout: Optional[float] = None) -> list[AircraftState]:
        """Get all aircraft states worldwide."""
        return self._read(
            CACHE_KEY_ALL_STATES,
            lambda: UpstreamRequest(f"{self.api_url}/states/all", {"extended": 1}),
            _states_from_body,
            best_effort=True,
            empty=[],
            timeout=timeout,
        )

    def get_states_in_bbox(self, bbox: BoundingBox, timeout: Optional[float] = None) -> list[AircraftState]:
        """Get aircraft states within a bounding box."""
        params = {
            "lamin": bbox.lat_min,
            "lamax": bbox.lat_max,
            "lomin": bbox.lon_min,
            "lomax": bbox.lon_max,
            "extended": 1,
        }
        return self._read(
            bbox.cache_key(),
            lambda: UpstreamRequest(f"{self.api_url}/states/all", params),
            _states_from_body,
            best_effort=True,
            empty=[],
            timeout=timeout,
        )

    def get_states_in_radius(
        self, latitude: float, longitude: float, radius_nm: float, timeout: Optional[float] = None
    ) -> list[AircraftState]:
        """Get aircraft within radius_nm of a point (bounding box + exact great-circle filter)."""
        circle = GeoCircle(latitude=latitude, longitude=longitude, radius_nm=radius_nm)
        states = self.get_states_in_bbox(circle_to_bbox(circle), timeout=timeout)
        return [
            s for s in states
            if s.has_position and within_radius(circle, s.latitude, s.longitude)
        ]

    def get_states_by_icao24(self, icao24_list: Iterable[str], timeout: Optional[float] = None) -> list[AircraftState]:
        """Get states for specific aircraft by ICAO24 address."""
        addresses = sorted({icao.strip().lower() for icao in icao24_list if icao and icao.strip()})
        if not addresses:
            return []

        params = {"icao24": addresses, "extended": 1}
        return self._read(
            CACHE_KEY_ICAO24_PREFIX + ",".join(addresses),
            lambda: UpstreamRequest(f"{self.api_url}/states/all", params),
            _states_from_body,
            best_effort=False,
            empty=[],
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Tracks and flights
    # ------------------------------------------------------------------

    def get_track(self, icao24: str, time: Optional[int] = None, timeout: Optional[float] = None) -> Optional[FlightTrack]:
        """
        Get the flight track for one aircraft.

        Returns None when the upstream has no track (or is throttling with
        nothing cached). Upstream failures raise UpstreamUnavailable.
        """
        params = {"icao24": icao24.strip().lower()}
        if time:
            params["time"] = int(time)

        key = f"track:{params['icao24']}:{params.get('time', 0)}"
        try:
            return self._read(
                key,
                lambda: UpstreamRequest(f"{self.api_url}/tracks/all", params),
                parse_track,
                best_effort=False,
                empty=None,
                timeout=timeout,
            )
        except NotFound:
            logger.info(f"No track data available for {params['icao24']}")
            return None

    def get_arrivals(self, airport: str, begin: int, end: int, timeout: Optional[float] = None) -> list[dict]:
        """Get flights that arrived at an airport (ICAO code) in [begin, end]."""
        return self._airport_flights("arrival", airport, begin, end, timeout)

    def get_departures(self, airport: str, begin: int, end: int, timeout: Optional[float] = None) -> list[dict]:
        """Get flights that departed an airport (ICAO code) in [begin, end]."""
        return self._airport_flights("departure", airport, begin, end, timeout)

    def _airport_flights(self, kind: str, airport: str, begin: int, end: int, timeout: Optional[float]) -> list[dict]:
        if end < begin:
            raise ValueError("end must not precede begin")
        params = {"airport": airport.upper(), "begin": int(begin), "end": int(end)}
        try:
            return self._read(
                f"{kind}:{params['airport']}:{params['begin']}:{params['end']}",
                lambda: UpstreamRequest(f"{self.api_url}/flights/{kind}", params),
                _list_from_body,
                best_effort=False,
                empty=[],
                timeout=timeout,
            )
        except NotFound:
            # OpenSky answers 404 when no flights match the window
            return []

    # ------------------------------------------------------------------

    def _read(
        self,
        key: str,
        build_request: Callable[[], UpstreamRequest],
        parse: Callable[[Any], Any],
        best_effort: bool,
        empty: Any,
        timeout: Optional[float],
    ) -> Any:
        cached = self.cache.lookup(key)
        if cached is not None and cached.fresh:
            return cached.data

        if self.backoff.is_suppressed():
            return self._fallback(key, empty, reason="backoff active")

        budget = timeout if timeout is not None else self.request_budget_s
        try:
            return self.gate.fetch(key, build_request, parse=parse, timeout=budget)
        except Throttled:
            return self._fallback(key, empty, reason="throttled")
        except UpstreamUnavailable as e:
            if not best_effort:
                raise
            fallback = self.cache.lookup(key)
            if fallback is None:
                raise
            logger.warning(f"Upstream unavailable for {key} ({e}); serving cached data aged {fallback.age_s:.0f}s")
            return fallback.data

    def _fallback(self, key: str, empty: Any, reason: str) -> Any:
        """Best available cache tier (fresh, else stale, else empty)."""
        cached = self.cache.lookup(key)
        if cached is not None:
            logger.info(f"{reason}: serving cached {key} aged {cached.age_s:.0f}s")
            return cached.data
        logger.warning(f"{reason}: no cached data for {key}, returning empty result")
        return empty

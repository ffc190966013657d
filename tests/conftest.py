"""
Shared fixtures: upstream payload builders, a controllable clock and a fake
requests session. No test touches the network.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from airsentinel.config import Settings
from airsentinel.contracts.validation import AircraftState
from airsentinel.ingestion.normalizer import STATE_VECTOR_SCHEMA
from airsentinel.ingestion.opensky_client import OpenSkyClient

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"

T0 = 1_700_000_000.0

DEFAULT_STATE_VECTOR = {
    "icao24": "abc123",
    "callsign": "TEST123 ",
    "origin_country": "United States",
    "time_position": 1700000000,
    "last_contact": 1700000000,
    "longitude": -73.78,
    "latitude": 40.64,
    "baro_altitude": 3000.0,
    "on_ground": False,
    "velocity": 150.0,
    "true_track": 90.0,
    "vertical_rate": 0.0,
    "sensors": None,
    "geo_altitude": 3050.0,
    "squawk": "1200",
    "spi": False,
    "position_source": 0,
    "category": 0,
}


class FakeClock:
    """Manually advanced clock; sleep() advances it and records the delay."""

    def __init__(self, start: float = T0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload=None, invalid_json: bool = False):
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def build_state_vector(**overrides) -> list:
    """An 18-field upstream state array with sensible defaults."""
    values = dict(DEFAULT_STATE_VECTOR, **overrides)
    return [values[name] for name, _, _ in STATE_VECTOR_SCHEMA]


def states_response(rows, time: int = 1700000000, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, {"time": time, "states": rows})


def token_response(token: str, expires_in: int = 1800) -> FakeResponse:
    return FakeResponse(200, {"access_token": token, "expires_in": expires_in, "token_type": "Bearer"})


def make_state(**overrides) -> AircraftState:
    """AircraftState with the same defaults as build_state_vector()."""
    values = dict(DEFAULT_STATE_VECTOR, **overrides)
    if isinstance(values["callsign"], str):
        values["callsign"] = values["callsign"].strip() or None
    return AircraftState(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def make_client(session, clock):
    """Factory for an OpenSkyClient wired to the fake session and clock."""
    def _make(**overrides) -> OpenSkyClient:
        settings = Settings(**overrides)
        return OpenSkyClient.from_settings(settings, session=session, clock=clock, sleep=clock.sleep)
    return _make


@pytest.fixture
def sample_replay_file() -> Path:
    return FIXTURES_DIR / "opensky_sample.jsonl"

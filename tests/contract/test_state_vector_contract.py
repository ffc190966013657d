"""
Contract tests for the upstream positional encoding.

Validates that state vectors and tracks are parsed strictly by position
and type, and that malformed records are rejected without unit conversion.
"""

import json

import pytest

from airsentinel.contracts.constants import STATE_VECTOR_FIELD_COUNT
from airsentinel.contracts.validation import AircraftState, FlightTrack
from airsentinel.exceptions import MalformedRecordError
from airsentinel.ingestion.normalizer import parse_state_vector, parse_states, parse_track

from conftest import build_state_vector


class TestStateVectorContract:
    """Test that 18-field state arrays map onto AircraftState."""

    def test_full_record_parses(self):
        raw = build_state_vector(
            icao24="4CA7B5",
            callsign="RYR8TJ  ",
            sensors=[1, 2],
            squawk="4652",
            category=6,
        )
        assert len(raw) == STATE_VECTOR_FIELD_COUNT

        state = parse_state_vector(raw)

        assert isinstance(state, AircraftState)
        assert state.icao24 == "4ca7b5"
        assert state.callsign == "RYR8TJ"
        assert state.origin_country == "United States"
        assert state.last_contact == 1700000000
        assert state.latitude == pytest.approx(40.64)
        assert state.longitude == pytest.approx(-73.78)
        assert state.sensors == [1, 2]
        assert state.squawk == "4652"
        assert state.category == 6

    def test_values_keep_upstream_units(self):
        """Meters and m/s pass through untouched."""
        state = parse_state_vector(build_state_vector(baro_altitude=10972.8, velocity=231.4, vertical_rate=-6.5))
        assert state.baro_altitude == pytest.approx(10972.8)
        assert state.velocity == pytest.approx(231.4)
        assert state.vertical_rate == pytest.approx(-6.5)

    def test_nullable_fields_accept_null(self):
        raw = build_state_vector(
            callsign=None, time_position=None, longitude=None, latitude=None,
            baro_altitude=None, velocity=None, true_track=None, vertical_rate=None,
            geo_altitude=None, squawk=None, category=None,
        )
        state = parse_state_vector(raw)

        assert state.callsign is None
        assert state.latitude is None
        assert not state.has_position
        assert state.category is None

    def test_blank_callsign_becomes_none(self):
        assert parse_state_vector(build_state_vector(callsign="        ")).callsign is None

    def test_integral_float_timestamps_become_int(self):
        state = parse_state_vector(build_state_vector(time_position=1700000000.0))
        assert state.time_position == 1700000000
        assert isinstance(state.time_position, int)

    def test_integer_coordinates_become_float(self):
        state = parse_state_vector(build_state_vector(latitude=51, longitude=0))
        assert isinstance(state.latitude, float)
        assert isinstance(state.longitude, float)

    @pytest.mark.parametrize("length", [17, 19, 0])
    def test_wrong_field_count_rejected(self, length):
        raw = build_state_vector()
        raw = (raw + [None, None])[:length]

        with pytest.raises(MalformedRecordError):
            parse_state_vector(raw, index=3)

    def test_error_carries_record_index(self):
        with pytest.raises(MalformedRecordError) as exc_info:
            parse_state_vector(build_state_vector()[:17], index=7)
        assert exc_info.value.index == 7

    def test_non_array_rejected(self):
        with pytest.raises(MalformedRecordError):
            parse_state_vector({"icao24": "abc123"})

    @pytest.mark.parametrize("field,value", [
        ("latitude", "51.5"),
        ("velocity", "fast"),
        ("on_ground", 0),
        ("position_source", True),
        ("last_contact", None),
        ("last_contact", 1700000000.5),
        ("icao24", 123456),
        ("sensors", ["a"]),
    ])
    def test_wrong_field_type_rejected(self, field, value):
        with pytest.raises(MalformedRecordError):
            parse_state_vector(build_state_vector(**{field: value}))

    def test_empty_icao24_rejected(self):
        with pytest.raises(MalformedRecordError):
            parse_state_vector(build_state_vector(icao24="   "))


class TestBatchParsing:
    """Test that batches skip malformed entries and report the count."""

    def test_malformed_entries_skipped(self):
        rows = [
            build_state_vector(icao24="aaa111"),
            ["too", "short"],
            build_state_vector(icao24="bbb222", latitude="north"),
            build_state_vector(icao24="ccc333"),
        ]
        states, discarded = parse_states(rows)

        assert [s.icao24 for s in states] == ["aaa111", "ccc333"]
        assert discarded == 2

    @pytest.mark.parametrize("rows", [None, []])
    def test_empty_batch(self, rows):
        assert parse_states(rows) == ([], 0)

    def test_sample_recording_parses(self, sample_replay_file):
        """Every response in the sample recording yields usable states."""
        with open(sample_replay_file) as f:
            responses = [json.loads(line) for line in f if line.strip()]

        assert len(responses) == 3
        states, discarded = parse_states(responses[0]["states"])
        assert len(states) == 3
        assert discarded == 1
        assert {s.icao24 for s in states} == {"4ca7b5", "a0b1c2", "3c6444"}


class TestTrackContract:
    """Test /tracks payload parsing."""

    def _payload(self, **overrides):
        payload = {
            "icao24": "3C6444",
            "callsign": "DLH9LF  ",
            "startTime": 1700000000,
            "endTime": 1700003600,
            "path": [
                [1700000000, 50.03, 8.57, 0.0, 250.0, True],
                [1700000060, 50.05, 8.50, 600.0, 251.0, False],
                [1700000120, None, None, 1200.0, None, False],
            ],
        }
        payload.update(overrides)
        return payload

    def test_track_parses(self):
        track = parse_track(self._payload())

        assert isinstance(track, FlightTrack)
        assert track.icao24 == "3c6444"
        assert track.callsign == "DLH9LF"
        assert track.start_time == 1700000000
        assert len(track.path) == 3
        assert track.path[0].on_ground is True
        assert track.path[1].baro_altitude == pytest.approx(600.0)
        assert track.path[2].latitude is None

    def test_malformed_waypoint_skipped(self):
        payload = self._payload(path=[
            [1700000000, 50.03, 8.57, 0.0, 250.0, True],
            [1700000060, 50.05],
            ["soon", 50.05, 8.50, 600.0, 251.0, False],
        ])
        track = parse_track(payload)
        assert len(track.path) == 1

    def test_missing_envelope_field_rejected(self):
        payload = self._payload()
        del payload["startTime"]

        with pytest.raises(MalformedRecordError):
            parse_track(payload)

    def test_non_object_rejected(self):
        with pytest.raises(MalformedRecordError):
            parse_track([1, 2, 3])

    def test_missing_path_is_empty(self):
        payload = self._payload()
        del payload["path"]
        assert parse_track(payload).path == []

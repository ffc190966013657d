"""
Integration tests for AirSentinelService, the poller loop and settings.
"""

from unittest.mock import MagicMock

import pytest

from airsentinel.config import Settings
from airsentinel.contracts.validation import BoundingBox
from airsentinel.exceptions import NotFound, UpstreamUnavailable
from airsentinel.ingestion.poller import run_live
from airsentinel.service import AirSentinelService, PollResult

from conftest import FakeResponse, build_state_vector, states_response


@pytest.fixture
def service(session, clock):
    settings = Settings(min_request_interval_s=0.0, recent_anomalies_limit=3)
    return AirSentinelService.from_settings(settings, session=session, clock=clock, sleep=clock.sleep)


class TestPoll:

    def test_poll_detects_and_enriches(self, service, session):
        session.get.return_value = states_response([
            build_state_vector(icao24="aaa111"),
            build_state_vector(icao24="bbb222", squawk="7700"),
            build_state_vector(icao24="ccc333", latitude=None, longitude=None),
        ])

        result = service.poll()

        assert result.total == 3
        assert len(result.aircraft) == 3
        assert [a.type for a in result.anomalies] == ["emergency_squawk"]
        assert result.stats.critical == 1
        # Position-less aircraft are returned but never tracked
        assert service.detector.history.tracked() == 2

    def test_poll_bbox_and_limit(self, service, session):
        session.get.return_value = states_response([
            build_state_vector(icao24="aaa111"),
            build_state_vector(icao24="bbb222"),
        ])
        bbox = BoundingBox(lat_min=40, lat_max=41, lon_min=-74, lon_max=-73)

        result = service.poll(bbox=bbox, limit=1)

        assert result.total == 2
        assert [a.icao24 for a in result.aircraft] == ["aaa111"]
        assert "lamin" in session.get.call_args.kwargs["params"]

    def test_cached_response_recorded_once(self, service, session, clock):
        session.get.return_value = states_response([
            build_state_vector(icao24="aaa111", squawk="7700"),
        ])

        results = []
        for _ in range(3):
            results.append(service.poll())
            clock.advance(2)

        assert session.get.call_count == 1
        assert len(service.detector.history.window("aaa111")) == 1
        # Every poll reports the anomaly, the recent store holds it once
        assert {r.anomalies[0].id for r in results} == {results[0].anomalies[0].id}
        assert len(service.recent_anomalies()) == 1

    def test_new_observation_recorded(self, service, session, clock):
        session.get.return_value = states_response([build_state_vector(icao24="aaa111")])
        service.poll()
        clock.advance(20)
        session.get.return_value = states_response([
            build_state_vector(icao24="aaa111", last_contact=1700000010),
        ])

        service.poll()

        assert len(service.detector.history.window("aaa111")) == 2

    def test_expired_cache_entries_evicted(self, service, session, clock):
        session.get.return_value = states_response([build_state_vector()])
        for i in range(50):
            service.poll(bbox=BoundingBox(lat_min=i, lat_max=i + 1, lon_min=0, lon_max=1))
        assert service.client.cache.size() == 50

        clock.advance(3600)
        service.poll(bbox=BoundingBox(lat_min=60, lat_max=61, lon_min=0, lon_max=1))

        assert service.client.cache.size() == 1

    def test_flight_not_found(self, service, session):
        session.get.return_value = states_response([])
        with pytest.raises(NotFound):
            service.flight("abc123")

    def test_track_not_found(self, service, session):
        session.get.return_value = FakeResponse(404, None)
        with pytest.raises(NotFound):
            service.track("abc123")


class TestRecentAnomalies:

    def test_bounded_and_newest_first(self, service, session, clock):
        for i in range(5):
            session.get.return_value = states_response([
                build_state_vector(icao24=f"aa{i:04d}", squawk="7700"),
            ])
            service.poll()
            clock.advance(20)

        recent = service.recent_anomalies()

        assert [a.icao24 for a in recent] == ["aa0004", "aa0003", "aa0002"]
        assert service.stats().total == 3

    def test_lookup_by_id(self, service, session):
        session.get.return_value = states_response([build_state_vector(squawk="7600")])
        anomaly = service.poll().anomalies[0]

        assert service.get_anomaly(anomaly.id) == anomaly
        with pytest.raises(NotFound):
            service.get_anomaly("ANO-0-unknown00")

    def test_filters(self, service, session):
        session.get.return_value = states_response([
            build_state_vector(icao24="aaa111", squawk="7500"),
            build_state_vector(icao24="bbb222", velocity=330.0),
        ])
        service.poll()

        assert [a.icao24 for a in service.recent_anomalies(severity="critical")] == ["aaa111"]
        assert [a.icao24 for a in service.recent_anomalies(anomaly_type="unusual_speed")] == ["bbb222"]
        assert len(service.recent_anomalies(limit=1)) == 1


class TestLivePolling:

    def test_failed_cycle_does_not_stop_loop(self):
        service = MagicMock()
        service.poll.side_effect = [PollResult(total=3), UpstreamUnavailable("down"), PollResult()]
        sleeps = []

        run_live(service, None, interval_s=10, max_cycles=3, sleep=sleeps.append)

        assert service.poll.call_count == 3
        assert len(sleeps) == 2
        assert all(9 < s <= 10 for s in sleeps)


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("OPENSKY_RATE_LIMIT_MS", "OPENSKY_CLIENT_ID", "BBOX_LAT_MIN"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.min_request_interval_s == 10.0
        assert settings.cache_fresh_ttl_s == 15.0
        assert settings.cache_stale_ttl_s == 300.0
        assert settings.backoff_s == 60.0
        assert settings.client_id is None
        assert settings.poll_bbox is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("OPENSKY_RATE_LIMIT_MS", "2500")
        monkeypatch.setenv("OPENSKY_CLIENT_ID", "client")
        monkeypatch.setenv("HISTORY_MAX_ENTRIES", "50")
        monkeypatch.setenv("BBOX_LAT_MIN", "40")
        monkeypatch.setenv("BBOX_LAT_MAX", "41")
        monkeypatch.setenv("BBOX_LON_MIN", "-74")
        monkeypatch.setenv("BBOX_LON_MAX", "-73")

        settings = Settings.from_env()

        assert settings.min_request_interval_s == 2.5
        assert settings.client_id == "client"
        assert settings.history_max_entries == 50
        assert settings.poll_bbox == {"lat_min": 40.0, "lat_max": 41.0, "lon_min": -74.0, "lon_max": -73.0}

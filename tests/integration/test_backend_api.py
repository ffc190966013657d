"""
Integration tests for the read-only HTTP hub.

The hub runs in-process via FastAPI's TestClient over a real
AirSentinelService whose upstream session is mocked.
"""

import pytest
from fastapi.testclient import TestClient

from airsentinel.backend.main import create_app
from airsentinel.config import Settings
from airsentinel.service import AirSentinelService

from conftest import FakeResponse, build_state_vector, states_response


@pytest.fixture
def service(session, clock):
    settings = Settings(min_request_interval_s=0.0)
    return AirSentinelService.from_settings(settings, session=session, clock=clock, sleep=clock.sleep)


@pytest.fixture
def api(service):
    return TestClient(create_app(service))


@pytest.fixture
def traffic(session):
    session.get.return_value = states_response([
        build_state_vector(icao24="aaa111", callsign="AAA111  "),
        build_state_vector(icao24="bbb222", callsign="BBB222  ", squawk="7700"),
    ])


class TestServiceEndpoints:

    def test_root(self, api):
        response = api.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "AirSentinel Backend"

    def test_health(self, api):
        response = api.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_metrics(self, api):
        api.get("/")
        response = api.get("/metrics")

        assert response.status_code == 200
        assert "backend_http_requests_total" in response.text


class TestFlightEndpoints:

    def test_flights_snapshot(self, api, traffic):
        response = api.get("/flights")
        data = response.json()

        assert response.status_code == 200
        assert data["count"] == 2
        assert data["total"] == 2
        by_icao = {f["icao24"]: f for f in data["flights"]}
        assert by_icao["aaa111"]["status"] == "NORMAL"
        assert by_icao["bbb222"]["status"] == "ANOMALY"
        assert by_icao["bbb222"]["anomaly_types"] == ["emergency_squawk"]
        assert data["stats"]["critical"] == 1

    def test_flights_limit(self, api, traffic):
        data = api.get("/flights", params={"limit": 1}).json()
        assert data["count"] == 1
        assert data["total"] == 2

    def test_flights_area(self, api, traffic, session):
        response = api.get("/flights/area", params={
            "lat_min": 40, "lat_max": 41, "lon_min": -74.5, "lon_max": -73,
        })

        assert response.status_code == 200
        assert session.get.call_args.kwargs["params"]["lamin"] == 40.0

    def test_flights_area_inverted_bounds(self, api):
        response = api.get("/flights/area", params={
            "lat_min": 41, "lat_max": 40, "lon_min": -74.5, "lon_max": -73,
        })
        assert response.status_code == 400
        assert "error" in response.json()

    def test_flights_area_missing_bound(self, api):
        response = api.get("/flights/area", params={"lat_min": 40, "lat_max": 41})
        assert response.status_code == 400

    def test_flights_radius(self, api, traffic):
        response = api.get("/flights/radius", params={"lat": 40.64, "lon": -73.78, "radius_nm": 5})
        assert response.status_code == 200
        assert response.json()["count"] == 2

    def test_flights_radius_rejects_zero(self, api):
        response = api.get("/flights/radius", params={"lat": 40.64, "lon": -73.78, "radius_nm": 0})
        assert response.status_code == 400

    def test_single_flight(self, api, traffic):
        response = api.get("/flights/BBB222")
        data = response.json()

        assert response.status_code == 200
        assert data["flight"]["icao24"] == "bbb222"
        assert data["anomalies"][0]["type"] == "emergency_squawk"

    def test_single_flight_not_transmitting(self, api, session):
        session.get.return_value = states_response(None)

        response = api.get("/flights/ccc333")

        assert response.status_code == 404
        assert "ccc333" in response.json()["error"]

    def test_upstream_failure_is_bad_gateway(self, api, session):
        session.get.return_value = FakeResponse(503, None)

        assert api.get("/flights").status_code == 502
        assert api.get("/flights/ccc333").status_code == 502

    def test_track(self, api, session):
        session.get.return_value = FakeResponse(200, {
            "icao24": "bbb222",
            "callsign": "BBB222",
            "startTime": 1700000000,
            "endTime": 1700000120,
            "path": [
                [1700000000, 40.60, -73.70, 3000.0, 90.0, False],
                [1700000060, 40.61, -73.60, 1800.0, 90.0, False],
            ],
        })

        track = api.get("/flights/bbb222/track").json()
        assert len(track["path"]) == 2

        replay = api.get("/flights/bbb222/track/anomalies").json()
        assert replay["count"] == 1
        assert replay["anomalies"][0]["type"] == "altitude_drop"

    def test_malformed_track_is_bad_gateway(self, api, session):
        session.get.return_value = FakeResponse(200, {"icao24": "bbb222", "path": []})

        response = api.get("/flights/bbb222/track")

        assert response.status_code == 502
        assert "startTime" in response.json()["error"]

    def test_track_not_found(self, api, session):
        session.get.return_value = FakeResponse(404, None)
        assert api.get("/flights/bbb222/track").status_code == 404


class TestAnomalyEndpoints:

    def test_recent_anomalies(self, api, traffic):
        api.get("/flights")

        data = api.get("/anomalies").json()
        assert data["count"] == 1
        anomaly = data["anomalies"][0]
        assert anomaly["icao24"] == "bbb222"
        assert anomaly["severity"] == "critical"

        by_id = api.get(f"/anomalies/{anomaly['id']}")
        assert by_id.status_code == 200
        assert by_id.json()["id"] == anomaly["id"]

    def test_filters(self, api, traffic):
        api.get("/flights")

        assert api.get("/anomalies", params={"severity": "critical"}).json()["count"] == 1
        assert api.get("/anomalies", params={"severity": "low"}).json()["count"] == 0
        assert api.get("/anomalies", params={"type": "go_around"}).json()["count"] == 0

    def test_invalid_filter(self, api):
        assert api.get("/anomalies", params={"severity": "urgent"}).status_code == 400

    def test_unknown_anomaly(self, api):
        response = api.get("/anomalies/ANO-0-missing00")
        assert response.status_code == 404

    def test_stats(self, api, traffic):
        api.get("/flights")

        stats = api.get("/stats").json()
        assert stats["total"] == 1
        assert stats["critical"] == 1
        assert stats["by_type"] == {"emergency_squawk": 1}

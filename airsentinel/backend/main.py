"""
FastAPI backend - read-only hub for AirSentinel.

Serves:
- REST API for live flights, tracks and detected anomalies
- Prometheus metrics endpoint

The hub only reads through AirSentinelService; the core never imports it.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from airsentinel import __version__
from airsentinel.config import Settings
from airsentinel.contracts.validation import AnomalyTypeLiteral, BoundingBox, SeverityLiteral
from airsentinel.backend.metrics import HTTP_ERRORS, HTTP_REQUESTS, get_metrics
from airsentinel.exceptions import AuthFailed, MalformedRecordError, NotFound, UpstreamUnavailable
from airsentinel.service import AirSentinelService, PollResult

logger = logging.getLogger(__name__)


def _error(status_code: int, kind: str, message: str) -> JSONResponse:
    HTTP_ERRORS.labels(error=kind).inc()
    return JSONResponse(status_code=status_code, content={"error": message})


def _poll_payload(result: PollResult) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "count": len(result.aircraft),
        "total": result.total,
        "flights": [a.model_dump(mode="json") for a in result.aircraft],
        "anomalies": [a.model_dump(mode="json") for a in result.anomalies],
        "stats": result.stats.model_dump(),
    }


def create_app(service: Optional[AirSentinelService] = None) -> FastAPI:
    """
    Build the hub application.

    When no service is given, one is created from the environment at
    startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 50)
        logger.info("AirSentinel Backend - Starting")
        logger.info("=" * 50)

        if app.state.service is None:
            app.state.service = AirSentinelService.from_settings(Settings.from_env())
            logger.info("AirSentinelService initialized from environment")

        yield

        logger.info("Shutdown complete")

    app = FastAPI(
        title="AirSentinel Backend API",
        description="Read-only hub for flight tracking and anomaly detection",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Middleware to track HTTP requests."""
        response = await call_next(request)
        HTTP_REQUESTS.labels(
            method=request.method,
            path=request.url.path,
            status=response.status_code
        ).inc()
        return response

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error(404, "not_found", str(exc))

    @app.exception_handler(UpstreamUnavailable)
    async def upstream_handler(request: Request, exc: UpstreamUnavailable):
        logger.error(f"Upstream unavailable for {request.url.path}: {exc}")
        return _error(502, "upstream", str(exc))

    @app.exception_handler(AuthFailed)
    async def auth_handler(request: Request, exc: AuthFailed):
        logger.error(f"Upstream authentication failed for {request.url.path}: {exc}")
        return _error(502, "upstream", str(exc))

    @app.exception_handler(MalformedRecordError)
    async def malformed_handler(request: Request, exc: MalformedRecordError):
        logger.error(f"Malformed upstream payload for {request.url.path}: {exc}")
        return _error(502, "upstream", f"Malformed upstream payload: {exc}")

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(400, "bad_request", "Invalid request parameters")

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        return _error(400, "bad_request", f"Invalid request parameters: {exc.error_count()} error(s)")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(400, "bad_request", str(exc))

    def get_service() -> AirSentinelService:
        return app.state.service

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "AirSentinel Backend",
            "version": __version__,
            "endpoints": {
                "flights": "/flights",
                "area": "/flights/area",
                "radius": "/flights/radius",
                "flight": "/flights/{icao24}",
                "track": "/flights/{icao24}/track",
                "anomalies": "/anomalies",
                "stats": "/stats",
                "health": "/health",
                "metrics": "/metrics"
            }
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        service = get_service()
        return {
            "status": "healthy" if service is not None else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "tracked_aircraft": service.detector.history.tracked() if service else 0,
        }

    # Blocking service calls use plain `def` so they run in the threadpool

    @app.get("/flights")
    def get_flights(limit: Optional[int] = Query(None, ge=1, le=10000)):
        """Worldwide snapshot with detection results."""
        return _poll_payload(get_service().poll(limit=limit))

    @app.get("/flights/area")
    def get_flights_in_area(
        lat_min: float,
        lat_max: float,
        lon_min: float,
        lon_max: float,
        limit: Optional[int] = Query(None, ge=1, le=10000),
    ):
        bbox = BoundingBox(lat_min=lat_min, lat_max=lat_max, lon_min=lon_min, lon_max=lon_max)
        return _poll_payload(get_service().poll(bbox=bbox, limit=limit))

    @app.get("/flights/radius")
    def get_flights_in_radius(
        lat: float = Query(..., ge=-90, le=90),
        lon: float = Query(..., ge=-180, le=180),
        radius_nm: float = Query(..., gt=0),
        limit: Optional[int] = Query(None, ge=1, le=10000),
    ):
        return _poll_payload(get_service().poll_radius(lat, lon, radius_nm, limit=limit))

    @app.get("/flights/{icao24}")
    def get_flight(icao24: str):
        flight, anomalies = get_service().flight(icao24)
        return {
            "flight": flight.model_dump(mode="json"),
            "anomalies": [a.model_dump(mode="json") for a in anomalies],
        }

    @app.get("/flights/{icao24}/track")
    def get_track(icao24: str, time: Optional[int] = Query(None, ge=0)):
        return get_service().track(icao24, time=time).model_dump(mode="json")

    @app.get("/flights/{icao24}/track/anomalies")
    def get_track_anomalies(icao24: str, time: Optional[int] = Query(None, ge=0)):
        """Replay the historical track through detection."""
        anomalies = get_service().track_anomalies(icao24, time=time)
        return {
            "icao24": icao24.lower(),
            "count": len(anomalies),
            "anomalies": [a.model_dump(mode="json") for a in anomalies],
        }

    @app.get("/anomalies")
    def get_anomalies(
        severity: Optional[SeverityLiteral] = None,
        type: Optional[AnomalyTypeLiteral] = None,
        limit: int = Query(50, ge=1, le=500),
    ):
        anomalies = get_service().recent_anomalies(severity=severity, anomaly_type=type, limit=limit)
        return {
            "count": len(anomalies),
            "anomalies": [a.model_dump(mode="json") for a in anomalies],
        }

    @app.get("/anomalies/{anomaly_id}")
    def get_anomaly(anomaly_id: str):
        return get_service().get_anomaly(anomaly_id).model_dump(mode="json")

    @app.get("/stats")
    def get_stats():
        return get_service().stats().model_dump()

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return get_metrics()

    return app


def run():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    settings = Settings.from_env()
    uvicorn.run(
        create_app(),
        host=settings.backend_host,
        port=settings.backend_port,
        log_level="info"
    )


if __name__ == "__main__":
    run()

"""
AirSentinel Contracts Package

Provides shared constants and validated models for aircraft state and anomalies.
"""

from airsentinel.contracts.constants import *
from airsentinel.contracts.validation import (
    AircraftState,
    EnrichedAircraft,
    TrackPoint,
    FlightTrack,
    BoundingBox,
    GeoCircle,
    Location,
    AnomalyDetails,
    Anomaly,
    AnomalyStats,
    validate_aircraft_state,
    validate_anomaly,
    validate_bounding_box,
)

__all__ = [
    # Constants
    "ANOMALY_TYPES",
    "SEVERITY_ORDER",
    "EMERGENCY_SQUAWKS",
    "STATE_VECTOR_FIELD_COUNT",
    "TRACK_POINT_FIELD_COUNT",
    # Models
    "AircraftState",
    "EnrichedAircraft",
    "TrackPoint",
    "FlightTrack",
    "BoundingBox",
    "GeoCircle",
    "Location",
    "AnomalyDetails",
    "Anomaly",
    "AnomalyStats",
    # Validators
    "validate_aircraft_state",
    "validate_anomaly",
    "validate_bounding_box",
]

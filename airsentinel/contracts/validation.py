"""
Validation library for AirSentinel data contracts.

Provides Pydantic models for aircraft state, tracks, geographic queries and
anomaly records. All components exchange these models instead of raw dicts.
"""

from typing import Optional, Literal
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from airsentinel.contracts.constants import (
    CACHE_KEY_BBOX_PREFIX,
    FLIGHT_STATUS_NORMAL,
    SEVERITY_ORDER,
)


AnomalyTypeLiteral = Literal[
    "altitude_drop",
    "holding_pattern",
    "emergency_squawk",
    "route_deviation",
    "rapid_descent",
    "unusual_speed",
    "go_around",
    "diversion",
]

SeverityLiteral = Literal["low", "medium", "high", "critical"]


# ============================================================================
# Geographic Queries
# ============================================================================

class BoundingBox(BaseModel):
    """Geographic bounding box (WGS84 degrees)."""
    model_config = ConfigDict(frozen=True)

    lat_min: float = Field(ge=-90, le=90)
    lat_max: float = Field(ge=-90, le=90)
    lon_min: float = Field(ge=-180, le=180)
    lon_max: float = Field(ge=-180, le=180)

    @model_validator(mode="after")
    def check_ordering(self) -> "BoundingBox":
        if self.lat_min > self.lat_max:
            raise ValueError("lat_min must not exceed lat_max")
        if self.lon_min > self.lon_max:
            raise ValueError("lon_min must not exceed lon_max")
        return self

    def cache_key(self) -> str:
        return (
            f"{CACHE_KEY_BBOX_PREFIX}{self.lat_min:.4f},{self.lat_max:.4f},"
            f"{self.lon_min:.4f},{self.lon_max:.4f}"
        )


class GeoCircle(BaseModel):
    """Circular search area, radius in nautical miles."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_nm: float = Field(gt=0)


class Location(BaseModel):
    """Position snapshot attached to an anomaly."""
    model_config = ConfigDict(frozen=True)

    latitude: float = 0.0
    longitude: float = 0.0


# ============================================================================
# Aircraft State
# ============================================================================

class AircraftState(BaseModel):
    """
    One real-time observation of one aircraft.

    Units are the upstream's native SI units (meters, m/s, degrees).
    Every optional field may be None, meaning "unknown".
    """
    model_config = ConfigDict(frozen=True)

    icao24: str = Field(min_length=1, description="ICAO 24-bit address (hex, lowercase)")
    callsign: Optional[str] = None
    origin_country: str = ""
    time_position: Optional[int] = None
    last_contact: int = Field(description="Most recent message timestamp (observation clock)")
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    baro_altitude: Optional[float] = None
    on_ground: bool = False
    velocity: Optional[float] = None
    true_track: Optional[float] = None
    vertical_rate: Optional[float] = None
    sensors: Optional[list[int]] = None
    geo_altitude: Optional[float] = None
    squawk: Optional[str] = None
    spi: bool = False
    position_source: int = 0
    category: Optional[int] = None

    @field_validator("icao24")
    @classmethod
    def validate_icao24(cls, v: str) -> str:
        """Normalize icao24 to lowercase."""
        return v.strip().lower()

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class EnrichedAircraft(AircraftState):
    """Aircraft state with the outcome of the latest detection pass."""
    status: Literal["NORMAL", "ANOMALY"] = FLIGHT_STATUS_NORMAL
    anomaly_types: list[str] = Field(default_factory=list)


# ============================================================================
# Flight Tracks
# ============================================================================

class TrackPoint(BaseModel):
    """One historical waypoint of a flight track."""
    model_config = ConfigDict(frozen=True)

    time: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    baro_altitude: Optional[float] = None
    true_track: Optional[float] = None
    on_ground: bool = False


class FlightTrack(BaseModel):
    """Historical trajectory of one aircraft."""
    icao24: str
    callsign: Optional[str] = None
    start_time: int
    end_time: int
    path: list[TrackPoint] = Field(default_factory=list)

    @field_validator("icao24")
    @classmethod
    def validate_icao24(cls, v: str) -> str:
        """Normalize icao24 to lowercase."""
        return v.strip().lower()


# ============================================================================
# Anomalies
# ============================================================================

class AnomalyDetails(BaseModel):
    """Human-readable description plus optional numeric metrics."""
    model_config = ConfigDict(frozen=True)

    description: str
    metrics: dict[str, float] = Field(default_factory=dict)
    previous_value: Optional[float] = None
    current_value: Optional[float] = None


class Anomaly(BaseModel):
    """Immutable anomaly record."""
    model_config = ConfigDict(frozen=True)

    id: str
    icao24: str
    callsign: Optional[str] = None
    type: AnomalyTypeLiteral
    severity: SeverityLiteral
    detected_at: datetime
    location: Location = Field(default_factory=Location)
    details: AnomalyDetails
    ai_analysis: Optional[str] = None

    @field_validator("detected_at", mode="before")
    @classmethod
    def parse_detected_at(cls, v):
        """Parse ISO 8601 datetime string."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v

    @property
    def severity_rank(self) -> int:
        return SEVERITY_ORDER[self.severity]

    def with_ai_analysis(self, analysis: str) -> "Anomaly":
        """Return a copy carrying an externally generated analysis."""
        return self.model_copy(update={"ai_analysis": analysis})


class AnomalyStats(BaseModel):
    """Counts by severity and by anomaly type."""
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)

    def as_flat_dict(self) -> dict[str, int]:
        """Severity and type counts merged into one mapping (dashboard shape)."""
        flat = self.model_dump(exclude={"by_type"})
        flat.update(self.by_type)
        return flat


# ============================================================================
# Validation Functions
# ============================================================================

def validate_aircraft_state(data: dict) -> tuple[bool, Optional[AircraftState], Optional[str]]:
    """
    Validate AircraftState.

    Returns:
        (is_valid, state_or_none, error_message_or_none)
    """
    try:
        state = AircraftState(**data)
        return True, state, None
    except ValidationError as e:
        return False, None, str(e)


def validate_anomaly(data: dict) -> tuple[bool, Optional[Anomaly], Optional[str]]:
    """
    Validate Anomaly.

    Returns:
        (is_valid, anomaly_or_none, error_message_or_none)
    """
    try:
        anomaly = Anomaly(**data)
        return True, anomaly, None
    except ValidationError as e:
        return False, None, str(e)


def validate_bounding_box(data: dict) -> tuple[bool, Optional[BoundingBox], Optional[str]]:
    """
    Validate BoundingBox.

    Returns:
        (is_valid, bbox_or_none, error_message_or_none)
    """
    try:
        bbox = BoundingBox(**data)
        return True, bbox, None
    except ValidationError as e:
        return False, None, str(e)

"""
Shared constants for AirSentinel components.

This module provides a single source of truth for:
- Anomaly types and severities
- Emergency squawk codes
- Upstream schema layout
- Unit conversion factors

All components should import from this module to ensure consistency.
"""

# Anomaly Types
ANOMALY_TYPE_ALTITUDE_DROP = "altitude_drop"
ANOMALY_TYPE_HOLDING_PATTERN = "holding_pattern"
ANOMALY_TYPE_EMERGENCY_SQUAWK = "emergency_squawk"
ANOMALY_TYPE_ROUTE_DEVIATION = "route_deviation"  # reserved, not emitted
ANOMALY_TYPE_RAPID_DESCENT = "rapid_descent"
ANOMALY_TYPE_UNUSUAL_SPEED = "unusual_speed"
ANOMALY_TYPE_GO_AROUND = "go_around"
ANOMALY_TYPE_DIVERSION = "diversion"  # reserved, not emitted

ANOMALY_TYPES = (
    ANOMALY_TYPE_ALTITUDE_DROP,
    ANOMALY_TYPE_HOLDING_PATTERN,
    ANOMALY_TYPE_EMERGENCY_SQUAWK,
    ANOMALY_TYPE_ROUTE_DEVIATION,
    ANOMALY_TYPE_RAPID_DESCENT,
    ANOMALY_TYPE_UNUSUAL_SPEED,
    ANOMALY_TYPE_GO_AROUND,
    ANOMALY_TYPE_DIVERSION,
)

# Severity Levels
SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"

# Sort rank: critical first
SEVERITY_ORDER = {
    SEVERITY_CRITICAL: 0,
    SEVERITY_HIGH: 1,
    SEVERITY_MEDIUM: 2,
    SEVERITY_LOW: 3,
}

# Emergency Squawk Codes
EMERGENCY_SQUAWKS = {
    "7500": "Hijacking",
    "7600": "Radio Failure",
    "7700": "General Emergency",
}

# Flight Status (enriched aircraft)
FLIGHT_STATUS_NORMAL = "NORMAL"
FLIGHT_STATUS_ANOMALY = "ANOMALY"

# Upstream positional schema
STATE_VECTOR_FIELD_COUNT = 18
TRACK_POINT_FIELD_COUNT = 6

# Cache keys
CACHE_KEY_ALL_STATES = "all"
CACHE_KEY_BBOX_PREFIX = "bbox:"
CACHE_KEY_ICAO24_PREFIX = "icao24:"

# Unit conversions
FEET_PER_METER = 3.281
FPM_PER_MPS = 196.85
KNOTS_PER_MPS = 1.944
EARTH_RADIUS_NM = 3440.065

# Poller modes
MODE_LIVE = "live"
MODE_REPLAY = "replay"

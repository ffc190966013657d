"""
State vector normalization.

Converts the upstream's positional-array encoding into validated
AircraftState / FlightTrack models. No unit conversion happens here;
values stay in meters, m/s and degrees.
"""

import logging
from typing import Any, Iterable, Optional

from airsentinel.contracts.constants import STATE_VECTOR_FIELD_COUNT, TRACK_POINT_FIELD_COUNT
from airsentinel.contracts.validation import AircraftState, FlightTrack, TrackPoint
from airsentinel.exceptions import MalformedRecordError
from airsentinel.ingestion.metrics import MALFORMED_RECORDS

logger = logging.getLogger(__name__)

# Value kinds for the positional schema
_STR = "str"
_INT = "int"
_NUM = "num"
_BOOL = "bool"
_LIST = "list"

# (field name, kind, nullable) by upstream index
STATE_VECTOR_SCHEMA = (
    ("icao24", _STR, False),
    ("callsign", _STR, True),
    ("origin_country", _STR, False),
    ("time_position", _INT, True),
    ("last_contact", _INT, False),
    ("longitude", _NUM, True),
    ("latitude", _NUM, True),
    ("baro_altitude", _NUM, True),
    ("on_ground", _BOOL, False),
    ("velocity", _NUM, True),
    ("true_track", _NUM, True),
    ("vertical_rate", _NUM, True),
    ("sensors", _LIST, True),
    ("geo_altitude", _NUM, True),
    ("squawk", _STR, True),
    ("spi", _BOOL, False),
    ("position_source", _INT, False),
    ("category", _INT, True),
)

TRACK_POINT_SCHEMA = (
    ("time", _INT, False),
    ("latitude", _NUM, True),
    ("longitude", _NUM, True),
    ("baro_altitude", _NUM, True),
    ("true_track", _NUM, True),
    ("on_ground", _BOOL, False),
)

assert len(STATE_VECTOR_SCHEMA) == STATE_VECTOR_FIELD_COUNT
assert len(TRACK_POINT_SCHEMA) == TRACK_POINT_FIELD_COUNT


def _coerce(name: str, kind: str, nullable: bool, value: Any) -> Any:
    """Type-check one positional value. Raises ValueError on mismatch."""
    if value is None:
        if nullable:
            return None
        raise ValueError(f"{name} must not be null")

    # bool is an int subclass; it is only accepted where a bool is expected
    if kind == _BOOL:
        if isinstance(value, bool):
            return value
    elif isinstance(value, bool):
        pass
    elif kind == _STR:
        if isinstance(value, str):
            return value
    elif kind == _INT:
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif kind == _NUM:
        if isinstance(value, (int, float)):
            return float(value)
    elif kind == _LIST:
        if isinstance(value, list) and all(
            isinstance(v, int) and not isinstance(v, bool) for v in value
        ):
            return value

    raise ValueError(f"{name} has unexpected type {type(value).__name__}")


def _check_positional(raw: Any, schema: tuple, what: str, index: Optional[int]) -> dict:
    if not isinstance(raw, (list, tuple)):
        raise MalformedRecordError(
            f"{what} must be an array, got {type(raw).__name__}", index=index
        )
    if len(raw) != len(schema):
        raise MalformedRecordError(
            f"{what} has {len(raw)} fields, expected {len(schema)}", index=index
        )

    fields = {}
    for (name, kind, nullable), value in zip(schema, raw):
        try:
            fields[name] = _coerce(name, kind, nullable, value)
        except ValueError as e:
            raise MalformedRecordError(f"{what}: {e}", index=index) from e
    return fields


def parse_state_vector(raw: Any, index: Optional[int] = None) -> AircraftState:
    """
    Parse one 18-field OpenSky state array.

    Raises:
        MalformedRecordError: wrong field count or field types.
    """
    fields = _check_positional(raw, STATE_VECTOR_SCHEMA, "state vector", index)

    if not fields["icao24"].strip():
        raise MalformedRecordError("state vector: icao24 is empty", index=index)

    callsign = fields["callsign"]
    fields["callsign"] = (callsign or "").strip() or None

    return AircraftState(**fields)


def parse_states(rows: Optional[Iterable[Any]]) -> tuple[list[AircraftState], int]:
    """
    Parse a batch of state arrays, skipping malformed entries.

    Returns:
        (states, discarded_count)
    """
    if not rows:
        return [], 0

    states = []
    discarded = 0
    for i, raw in enumerate(rows):
        try:
            states.append(parse_state_vector(raw, index=i))
        except MalformedRecordError as e:
            discarded += 1
            MALFORMED_RECORDS.inc()
            logger.debug(f"Discarding state vector #{i}: {e}")

    if discarded:
        logger.warning(f"Discarded {discarded} malformed state vectors out of {discarded + len(states)}")

    return states, discarded


def parse_track(payload: Any) -> FlightTrack:
    """
    Parse a /tracks response into a FlightTrack.

    Malformed waypoints are skipped; a malformed envelope raises.
    """
    if not isinstance(payload, dict):
        raise MalformedRecordError(f"track must be an object, got {type(payload).__name__}")

    try:
        icao24 = payload["icao24"]
        start_time = payload["startTime"]
        end_time = payload["endTime"]
    except KeyError as e:
        raise MalformedRecordError(f"track is missing {e}") from e

    path = []
    skipped = 0
    for i, raw in enumerate(payload.get("path") or []):
        try:
            path.append(TrackPoint(**_check_positional(raw, TRACK_POINT_SCHEMA, "track point", i)))
        except MalformedRecordError as e:
            skipped += 1
            MALFORMED_RECORDS.inc()
            logger.debug(f"Discarding track point #{i}: {e}")

    if skipped:
        logger.warning(f"Discarded {skipped} malformed track points for {icao24}")

    callsign = payload.get("callsign")
    if isinstance(callsign, str):
        callsign = callsign.strip() or None
    else:
        callsign = None

    try:
        return FlightTrack(
            icao24=icao24,
            callsign=callsign,
            start_time=start_time,
            end_time=end_time,
            path=path,
        )
    except ValueError as e:
        # pydantic.ValidationError subclasses ValueError
        raise MalformedRecordError(f"track envelope invalid: {e}") from e

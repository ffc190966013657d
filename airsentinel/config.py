"""
Environment-driven configuration.

Every component receives its settings at construction time; nothing in the
acquisition or detection core reads the environment on its own.
"""

import os
from dataclasses import dataclass
from typing import Optional

from airsentinel.contracts.constants import MODE_LIVE


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


@dataclass(frozen=True)
class Settings:
    # Upstream
    opensky_api_url: str = "https://opensky-network.org/api"
    opensky_token_url: str = (
        "https://auth.opensky-network.org/auth/realms/opensky-network/protocol/openid-connect/token"
    )
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    request_timeout_s: float = 30.0

    # Fetch gate / cache / backoff
    min_request_interval_s: float = 10.0
    cache_fresh_ttl_s: float = 15.0
    cache_stale_ttl_s: float = 300.0
    backoff_s: float = 60.0
    token_refresh_margin_s: float = 60.0

    # History
    history_max_entries: int = 100
    history_max_age_s: float = 30 * 60

    # Poller
    poller_mode: str = MODE_LIVE
    poll_interval_s: float = 10.0
    bbox_lat_min: Optional[float] = None
    bbox_lat_max: Optional[float] = None
    bbox_lon_min: Optional[float] = None
    bbox_lon_max: Optional[float] = None
    replay_file: str = "fixtures/opensky_sample.jsonl"
    replay_speed: float = 1.0
    metrics_port: int = 8001

    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000
    recent_anomalies_limit: int = 500

    @classmethod
    def from_env(cls) -> "Settings":
        def optional_float(name: str) -> Optional[float]:
            value = os.getenv(name)
            return float(value) if value not in (None, "") else None

        return cls(
            opensky_api_url=os.getenv("OPENSKY_API_URL", cls.opensky_api_url),
            opensky_token_url=os.getenv("OPENSKY_TOKEN_URL", cls.opensky_token_url),
            client_id=os.getenv("OPENSKY_CLIENT_ID") or None,
            client_secret=os.getenv("OPENSKY_CLIENT_SECRET") or None,
            username=os.getenv("OPENSKY_USERNAME") or None,
            password=os.getenv("OPENSKY_PASSWORD") or None,
            request_timeout_s=_env_float("OPENSKY_TIMEOUT_SECONDS", "30"),
            min_request_interval_s=_env_float("OPENSKY_RATE_LIMIT_MS", "10000") / 1000.0,
            cache_fresh_ttl_s=_env_float("CACHE_FRESH_TTL_SECONDS", "15"),
            cache_stale_ttl_s=_env_float("CACHE_STALE_TTL_SECONDS", "300"),
            backoff_s=_env_float("BACKOFF_SECONDS", "60"),
            token_refresh_margin_s=_env_float("TOKEN_REFRESH_MARGIN_SECONDS", "60"),
            history_max_entries=_env_int("HISTORY_MAX_ENTRIES", "100"),
            history_max_age_s=_env_float("HISTORY_MAX_AGE_SECONDS", "1800"),
            poller_mode=os.getenv("POLLER_MODE", MODE_LIVE),
            poll_interval_s=_env_float("POLL_INTERVAL_SECONDS", "10"),
            bbox_lat_min=optional_float("BBOX_LAT_MIN"),
            bbox_lat_max=optional_float("BBOX_LAT_MAX"),
            bbox_lon_min=optional_float("BBOX_LON_MIN"),
            bbox_lon_max=optional_float("BBOX_LON_MAX"),
            replay_file=os.getenv("REPLAY_FILE", cls.replay_file),
            replay_speed=_env_float("REPLAY_SPEED", "1.0"),
            metrics_port=_env_int("METRICS_PORT", "8001"),
            backend_host=os.getenv("BACKEND_HOST", cls.backend_host),
            backend_port=_env_int("BACKEND_PORT", "8000"),
            recent_anomalies_limit=_env_int("RECENT_ANOMALIES_LIMIT", "500"),
        )

    @property
    def poll_bbox(self) -> Optional[dict]:
        """Configured polling area, or None to poll all states."""
        bounds = (self.bbox_lat_min, self.bbox_lat_max, self.bbox_lon_min, self.bbox_lon_max)
        if any(b is None for b in bounds):
            return None
        return {
            "lat_min": self.bbox_lat_min,
            "lat_max": self.bbox_lat_max,
            "lon_min": self.bbox_lon_min,
            "lon_max": self.bbox_lon_max,
        }

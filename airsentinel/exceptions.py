"""
Error taxonomy for upstream acquisition and parsing.
"""

from typing import Optional


class AirSentinelError(Exception):
    """Base exception for AirSentinel errors."""
    pass


class UpstreamUnavailable(AirSentinelError):
    """Network failure or non-2xx (non-429) upstream response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Throttled(AirSentinelError):
    """Upstream answered with HTTP 429."""
    pass


class AuthFailed(AirSentinelError):
    """Token acquisition failed or credentials were rejected."""
    pass


class MalformedRecordError(AirSentinelError):
    """A single upstream record does not match the positional schema."""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class NotFound(AirSentinelError):
    """Requested track or aircraft is absent upstream."""
    pass

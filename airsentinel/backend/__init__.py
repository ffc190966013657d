"""Read-only FastAPI hub over an AirSentinelService."""

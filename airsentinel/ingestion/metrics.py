"""
Prometheus metrics for upstream acquisition.
"""

from prometheus_client import Counter, Histogram

UPSTREAM_REQUESTS = Counter(
    'ingestion_upstream_requests_total',
    'Upstream HTTP requests by outcome',
    ['status']
)

UPSTREAM_LATENCY = Histogram(
    'ingestion_upstream_latency_seconds',
    'Upstream request duration'
)

COALESCED_REQUESTS = Counter(
    'ingestion_coalesced_requests_total',
    'Callers that joined an identical in-flight request'
)

CACHE_LOOKUPS = Counter(
    'ingestion_cache_lookups_total',
    'Response cache lookups by tier',
    ['tier']  # fresh, stale, miss
)

BACKOFF_ACTIVATIONS = Counter(
    'ingestion_backoff_activations_total',
    'Throttling cooldowns started'
)

TOKEN_REFRESHES = Counter(
    'ingestion_token_refreshes_total',
    'OAuth2 token refresh attempts',
    ['status']
)

MALFORMED_RECORDS = Counter(
    'ingestion_malformed_records_total',
    'State vectors discarded by the normalizer'
)

"""
Prometheus metrics for the read-only HTTP hub.
"""

import os
from fastapi.responses import Response
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import CollectorRegistry


HTTP_REQUESTS = Counter(
    'backend_http_requests_total',
    'HTTP requests',
    ['method', 'path', 'status']
)

HTTP_ERRORS = Counter(
    'backend_http_errors_total',
    'Requests answered with an error payload',
    ['error']  # not_found, upstream, bad_request
)


def get_metrics() -> Response:
    """Handler body for the /metrics endpoint."""
    if 'PROMETHEUS_MULTIPROC_DIR' in os.environ:
        # Multi-process mode (uvicorn workers)
        registry = CollectorRegistry()
        MultiProcessCollector(registry)
        output = generate_latest(registry)
    else:
        output = generate_latest()

    return Response(content=output, media_type=CONTENT_TYPE_LATEST)

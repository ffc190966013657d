"""
Prometheus metrics for the detection engine.
"""

from prometheus_client import Counter, Gauge, Histogram

AIRCRAFT_EVALUATED = Counter(
    'processing_aircraft_evaluated_total',
    'Aircraft run through the detector pipeline'
)

AIRCRAFT_SKIPPED = Counter(
    'processing_aircraft_skipped_total',
    'Aircraft skipped for lacking a position fix'
)

ANOMALIES_DETECTED = Counter(
    'processing_anomalies_detected_total',
    'Total anomalies detected',
    ['anomaly_type', 'severity']
)

DETECTOR_ERRORS = Counter(
    'processing_detector_errors_total',
    'Unexpected errors raised inside a detection rule',
    ['detector']
)

TRACKED_AIRCRAFT = Gauge(
    'processing_tracked_aircraft',
    'Aircraft with a non-empty history window'
)

BATCH_LATENCY = Histogram(
    'processing_batch_latency_seconds',
    'Batch detection duration',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

DUPLICATE_OBSERVATIONS = Counter(
    'processing_duplicate_observations_total',
    'States whose last_contact is not newer than the recorded one'
)

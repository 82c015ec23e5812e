"""Prometheus metrics collection and export.

Metric Types:
    Counters (always increase):
        - backend_requests_total: Table/storage/auth requests by operation, table, status
        - errors_total: Errors by type and component
        - realtime_events_total: Change-feed events received by table and event
        - refetches_total: View refetches triggered by realtime events

    Histograms (track distributions):
        - backend_request_duration_seconds: Backend request latency

Usage:

    ```python
    from socialsync.metrics import backend_requests_total

    backend_requests_total.labels(operation="select", table="posts", status="success").inc()
    ```

Exposing the registry (the ``socialsync metrics`` command prints this):

    ```python
    from socialsync.metrics import generate_metrics_output

    print(generate_metrics_output().decode())
    ```
"""

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

# Custom registry for explicit metric control
registry = CollectorRegistry()

# Latency buckets (seconds), from 10ms to 10s
DEFAULT_LATENCY_BUCKETS = (
    0.01,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)


# ========== COUNTER METRICS ==========

backend_requests_total = Counter(
    "backend_requests_total",
    "Total number of backend requests",
    labelnames=["operation", "table", "status"],
    registry=registry,
)
"""Counter for backend requests.

Labels:
    operation: select, insert, update, upsert, delete, upload, auth
    table: Table name, bucket name, or auth endpoint
    status: success or error
"""

errors_total = Counter(
    "errors_total",
    "Total number of errors encountered",
    labelnames=["error_type", "component"],
    registry=registry,
)

realtime_events_total = Counter(
    "realtime_events_total",
    "Total number of realtime change events received",
    labelnames=["table", "event"],
    registry=registry,
)

refetches_total = Counter(
    "refetches_total",
    "Total number of view refetches triggered by realtime events",
    labelnames=["view"],
    registry=registry,
)


# ========== HISTOGRAM METRICS ==========

backend_request_duration_seconds = Histogram(
    "backend_request_duration_seconds",
    "Duration of backend requests in seconds",
    labelnames=["operation", "table"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=registry,
)


# ========== HELPER FUNCTIONS ==========


def generate_metrics_output() -> bytes:
    """Generate Prometheus metrics output in text exposition format."""
    return generate_latest(registry)


__all__ = [
    "registry",
    "backend_requests_total",
    "errors_total",
    "realtime_events_total",
    "refetches_total",
    "backend_request_duration_seconds",
    "generate_metrics_output",
    "DEFAULT_LATENCY_BUCKETS",
]

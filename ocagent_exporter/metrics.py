"""Prometheus metrics."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, start_http_server

# Producer side
EXPORT_REQUESTS = Counter(
    "ocagent_export_requests_total", "Export requests enqueued", ["service"]
)
EXPORTED_SPANS = Counter(
    "ocagent_spans_total", "Spans converted and enqueued", ["service"]
)
DROPPED_BATCHES = Counter(
    "ocagent_dropped_batches_total",
    "Span batches dropped because the exporter was stopped",
    ["service"],
)

# Worker side
WORKERS_STARTED = Counter(
    "ocagent_workers_started_total", "Export stream workers started", ["service"]
)
STREAM_ERRORS = Counter(
    "ocagent_stream_errors_total",
    "Export streams ended by an error",
    ["service", "error_type"],
)
QUEUE_SIZE = Gauge(
    "ocagent_request_queue_size",
    "Export requests waiting to be written to the stream",
    ["service"],
)


def start_server(port: int = 9108) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)

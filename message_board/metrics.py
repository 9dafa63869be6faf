"""
Prometheus metrics for the message board API.

This module provides:
- HTTP request counter (method, path, status)
- Message operation outcome counter (operation, result)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

import re

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: ok, validation_error, not_found, unauthorized
message_operations_total = Counter(
    "message_operations_total",
    "Total message store operations by outcome",
    labelnames=["operation", "result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

_MESSAGE_ID_SEGMENT = re.compile(r"/messages/\d+")
_AUTHOR_SEGMENT = re.compile(r"/authors/[^/]+")


# =============================================================================
# Helper Functions
# =============================================================================

def normalize_path(path: str) -> str:
    """
    Collapse ids in a request path to keep label cardinality bounded.

    /messages/42/thread -> /messages/{id}/thread
    """
    path = path.split("?")[0]
    path = _MESSAGE_ID_SEGMENT.sub("/messages/{id}", path)
    return _AUTHOR_SEGMENT.sub("/authors/{author}", path)


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = normalize_path(path)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_operation(operation: str, result: str) -> None:
    """
    Record the outcome of a store operation.

    Args:
        operation: Store operation name, e.g. "create_message"
        result: One of "ok", "validation_error", "not_found", "unauthorized"
    """
    message_operations_total.labels(operation=operation, result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

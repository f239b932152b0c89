"""
Prometheus metrics for the chat history API.

This module provides:
- HTTP request counter (method, path, status)
- History fetch outcome counter (table, result)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# HTTP request counter with labels for method, path, and status code
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# History fetch outcome counter
# result: ok, empty, error, stale
history_fetch_total = Counter(
    "history_fetch_total",
    "Total session page fetch outcomes",
    labelnames=["table", "result"]
)

# Request latency histogram in seconds, default buckets
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_history_fetch(table: str, result: str) -> None:
    """
    Record a session page fetch outcome.

    Args:
        table: Table the fetch read from
        result: One of:
            - "ok": at least one session returned
            - "empty": no sessions on the requested page
            - "error": a query failed
            - "stale": a newer fetch was issued before this one finished
    """
    history_fetch_total.labels(table=table, result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

"""
Prometheus metrics for the webhook service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook event counter (kind, result)
- Timestamp fallback counter (field)
- Degraded message query counter
- Outbound send counter (kind, result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# kind: canonical event kind; result: processing result status
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook events processed",
    labelnames=["kind", "result"]
)

timestamp_fallback_total = Counter(
    "timestamp_fallback_total",
    "Timestamps that could not be recovered and were defaulted to ingestion time",
    labelnames=["field"]
)

message_query_fallback_total = Counter(
    "message_query_fallback_total",
    "Message reads served by the filter-only fallback query"
)

outbound_sends_total = Counter(
    "outbound_sends_total",
    "Outbound messaging API sends",
    labelnames=["kind", "result"]
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
    normalized_path = path.split("?")[0]
    # Per-counterparty paths would explode label cardinality
    if normalized_path.startswith("/api/messages/"):
        normalized_path = "/api/messages/{counterparty_id}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_event(kind: str, result: str) -> None:
    """Record the outcome of one processed webhook event."""
    webhook_events_total.labels(kind=kind, result=result).inc()


def record_timestamp_fallback(field: str) -> None:
    timestamp_fallback_total.labels(field=field).inc()


def record_query_fallback() -> None:
    message_query_fallback_total.inc()


def record_outbound_send(kind: str, result: str) -> None:
    outbound_sends_total.labels(kind=kind, result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string for Prometheus exposition format
    """
    return CONTENT_TYPE_LATEST

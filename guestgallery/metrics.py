"""
Prometheus metrics for the guest gallery service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook delivery counter (result)
- Per-message outcome counter (kind, outcome)
- Reply delivery counter (result)

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

# result: accepted, invalid_signature, ignored
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook deliveries by result",
    labelnames=["result"]
)

# kind: text, image, video, unsupported
# outcome: see ingestion.Outcome
messages_processed_total = Counter(
    "messages_processed_total",
    "Inbound WhatsApp messages by kind and outcome",
    labelnames=["kind", "outcome"]
)

# result: sent, failed
replies_total = Counter(
    "replies_total",
    "Replies sent back to WhatsApp senders",
    labelnames=["result"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
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
    # Media paths carry one key per object; collapse them to keep cardinality low
    normalized_path = path.split("?")[0]
    if normalized_path.startswith("/media/"):
        normalized_path = "/media"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    webhook_requests_total.labels(result=result).inc()


def record_message_outcome(kind: str, outcome: str) -> None:
    messages_processed_total.labels(kind=kind, outcome=outcome).inc()


def record_reply(result: str) -> None:
    replies_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

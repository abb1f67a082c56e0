"""
Prometheus metrics for the mock provider.

Everything lives in the default registry under the ``smssink_`` namespace:
- smssink_http_requests_total / smssink_request_latency_seconds
- smssink_messages_total, by direction and outcome
- smssink_webhook_callbacks_total, by event type and delivery outcome
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


NAMESPACE = "smssink"

# Latency buckets sized for a local SQLite-backed mock
LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)


http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests handled",
    labelnames=["method", "path", "status"],
    namespace=NAMESPACE,
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Time spent handling a request",
    labelnames=["method", "path"],
    namespace=NAMESPACE,
    buckets=LATENCY_BUCKETS,
)

# outbound: created, unauthorized, validation_error, invalid_json, error
# inbound: received, validation_error, invalid_json, error
messages_total = Counter(
    "messages_total",
    "Send and receive outcomes",
    labelnames=["direction", "result"],
    namespace=NAMESPACE,
)

# result: delivered, failover, failed
webhook_callbacks_total = Counter(
    "webhook_callbacks_total",
    "Status callback delivery outcomes",
    labelnames=["event_type", "result"],
    namespace=NAMESPACE,
)


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Count a finished request and observe its latency.

    Args:
        method: HTTP method
        path: Route template when the request matched one, else the raw path
        status: Response status code
        latency_seconds: Wall time spent in the app
    """
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    request_latency_seconds.labels(method=method, path=path).observe(latency_seconds)


def record_message_outcome(direction: str, result: str) -> None:
    messages_total.labels(direction=direction, result=result).inc()


def record_callback_outcome(event_type: str, result: str) -> None:
    """
    Args:
        event_type: message.sent or message.delivered
        result: "delivered" (primary URL), "failover" (failover URL) or "failed"
    """
    webhook_callbacks_total.labels(event_type=event_type, result=result).inc()


def get_metrics() -> bytes:
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

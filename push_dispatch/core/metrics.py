"""
Prometheus Metrics Registry

Provides Prometheus-compatible metrics for:
- HTTP request counts and latencies
- Push deliveries per provider and outcome
- Dispatch request outcomes
- APNS signing token minting
"""
import re
import time
import logging
from typing import Optional
from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

logger = logging.getLogger(__name__)

# Create a custom registry to avoid conflicts with default registry
REGISTRY = CollectorRegistry()

# ============================================================================
# Application Info
# ============================================================================

app_info = Info(
    'app',
    'Application information',
    registry=REGISTRY
)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status_code'],
    registry=REGISTRY
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY
)

# ============================================================================
# Push Notification Metrics
# ============================================================================

push_notifications_sent_total = Counter(
    'push_notifications_sent_total',
    'Total push notification delivery attempts',
    ['provider', 'status'],  # provider: apns, fcm; status: DeliveryStatus value
    registry=REGISTRY
)

push_notification_duration_seconds = Histogram(
    'push_notification_duration_seconds',
    'Push notification delivery duration in seconds',
    ['provider'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY
)

push_dispatch_requests_total = Counter(
    'push_dispatch_requests_total',
    'Total dispatch requests handled by the request boundary',
    ['result'],  # ok, no_recipients, unauthorized, invalid_json, registry_unavailable, ...
    registry=REGISTRY
)

push_signing_tokens_minted_total = Counter(
    'push_signing_tokens_minted_total',
    'Total APNS provider authentication tokens signed',
    registry=REGISTRY
)

# ============================================================================
# Application Uptime
# ============================================================================

_start_time: Optional[float] = None

app_uptime_seconds = Gauge(
    'app_uptime_seconds',
    'Application uptime in seconds',
    registry=REGISTRY
)

# ============================================================================
# Helper Functions
# ============================================================================


def init_metrics(version: str = "1.0.0"):
    """
    Initialize metrics with application info.

    Args:
        version: Application version string
    """
    global _start_time
    _start_time = time.time()

    app_info.info({
        'version': version,
        'name': 'push-dispatch'
    })

    logger.info("Prometheus metrics initialized", extra={"version": version})


def record_request_metrics(
    method: str,
    path: str,
    status_code: int,
    response_time_seconds: float
):
    """
    Record HTTP request metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status_code: Response status code
        response_time_seconds: Response time in seconds
    """
    normalized_path = _normalize_path(path)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status_code=str(status_code)
    ).inc()

    http_request_duration_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(response_time_seconds)


def record_push_notification_sent(provider: str, status: str, duration_seconds: float = 0.0):
    """
    Record push notification delivery metrics.

    Args:
        provider: Provider that handled the endpoint (apns, fcm)
        status: Delivery status value
        duration_seconds: Delivery duration
    """
    push_notifications_sent_total.labels(provider=provider, status=status).inc()
    if duration_seconds > 0:
        push_notification_duration_seconds.labels(provider=provider).observe(duration_seconds)


def record_dispatch_request(result: str):
    """Record the outcome of one dispatch request."""
    push_dispatch_requests_total.labels(result=result).inc()


def record_signing_token_minted():
    """Record that a new APNS provider token was signed."""
    push_signing_tokens_minted_total.inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format metrics
    """
    if _start_time:
        app_uptime_seconds.set(time.time() - _start_time)
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get Prometheus content type header value."""
    return CONTENT_TYPE_LATEST


def _normalize_path(path: str) -> str:
    """
    Normalize request path to avoid high cardinality.

    Replaces UUIDs and numeric IDs with placeholders.
    """
    path = re.sub(
        r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
        '{id}',
        path,
        flags=re.IGNORECASE
    )
    path = re.sub(r'/\d+', '/{id}', path)

    return path

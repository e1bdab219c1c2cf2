"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # success, insufficient_capacity, duplicate_reservation, lock_timeout, ...
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking transaction latency (lock wait included)',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0]
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Booking cancellations',
    ['result']  # cancelled, already_cancelled
)

# Download metrics
download_requests = Counter(
    'download_requests_total',
    'Download authorization outcomes',
    ['result']  # authorized, expired_token, signature_mismatch, not_purchased, ...
)

download_links_issued = Counter(
    'download_links_issued_total',
    'Signed download links minted'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt outcome (success or an error code)."""
    booking_attempts.labels(status=status).inc()


def record_cancellation(already_cancelled: bool):
    result = "already_cancelled" if already_cancelled else "cancelled"
    booking_cancellations.labels(result=result).inc()


def record_download(result: str):
    """Record download outcome (authorized or an error code)."""
    download_requests.labels(result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()

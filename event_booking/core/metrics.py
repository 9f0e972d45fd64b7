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
    ['outcome']  # success, conflict, validation, not_found, error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Reservation (validate + conditional decrement + insert) latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

spots_reserved = Counter(
    'event_spots_reserved_total',
    'Spots taken from event inventory by successful bookings'
)

spots_released = Counter(
    'event_spots_released_total',
    'Spots returned to event inventory by cancellations'
)

booking_cancellations = Counter(
    'booking_cancellations_total',
    'Booking cancellation attempts',
    ['outcome']  # success, rejected
)

# Notification metrics
notifications_sent = Counter(
    'booking_notifications_total',
    'Fire-and-forget booking notifications',
    ['channel', 'result']  # email/whatsapp, sent/failed/skipped
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(outcome: str):
    """Outcome: success, conflict, validation, not_found, error"""
    booking_attempts.labels(outcome=outcome).inc()


def record_cancellation(success: bool, spots: int = 0):
    booking_cancellations.labels(outcome="success" if success else "rejected").inc()
    if success and spots:
        spots_released.inc(spots)


def record_notification(channel: str, result: str):
    notifications_sent.labels(channel=channel, result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()

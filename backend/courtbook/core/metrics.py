"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at the /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Scheduling metrics
booking_operations = Counter(
    'booking_operations_total',
    'Scheduling operations by outcome',
    ['operation', 'outcome']  # create/reschedule/delete x success/conflict/invalid/not_found/error
)

booking_latency = Histogram(
    'booking_operation_latency_seconds',
    'Scheduling operation latency',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

conflicts_detected = Counter(
    'booking_conflicts_total',
    'Candidate intervals rejected because of overlapping bookings'
)

# Resource lock metrics
lock_wait = Histogram(
    'court_lock_wait_seconds',
    'Time spent waiting for per-court write locks',
    ['strategy'],
    buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

lock_failures = Counter(
    'court_lock_failures_total',
    'Lock acquisitions that timed out or failed',
    ['strategy']
)

# Slot index metrics
slot_index_size = Gauge(
    'slot_index_bookings',
    'Scheduled bookings currently held in the slot index'
)

slot_index_rebuilds = Counter(
    'slot_index_rebuilds_total',
    'Full slot index rebuilds from the interval store',
    ['reason']  # startup, lazy, divergence, integrity
)

# Reschedule coordinator metrics
move_outcomes = Counter(
    'reschedule_moves_total',
    'Client-side move outcomes',
    ['outcome']  # committed, rolled_back, cancelled, rejected
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_operation(operation: str, outcome: str):
    """Record a scheduling operation. Outcome: success, conflict, invalid, not_found, error"""
    booking_operations.labels(operation=operation, outcome=outcome).inc()


def record_move(outcome: str):
    move_outcomes.labels(outcome=outcome).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()

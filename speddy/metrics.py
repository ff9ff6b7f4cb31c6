"""
Prometheus metrics for the scheduling service.

Tracks session moves, detected conflicts, instance generation and attendance.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
http_requests_total = Counter(
    "scheduling_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "scheduling_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0)
)

# Scheduling metrics
session_moves_total = Counter(
    "scheduling_session_moves_total",
    "Total session move attempts",
    ["outcome"]
)

conflicts_detected_total = Counter(
    "scheduling_conflicts_detected_total",
    "Total conflicts detected while validating placements",
    ["type"]
)

sessions_flagged_total = Counter(
    "scheduling_sessions_flagged_total",
    "Sessions marked as conflicting after a calendar change",
    ["source"]
)

sessions_placed_total = Counter(
    "scheduling_sessions_placed_total",
    "Sessions placed by the auto-scheduler or manual placement",
    ["method"]
)

instances_created_total = Counter(
    "scheduling_instances_created_total",
    "Total session instances created from templates"
)

instance_generation_duration_seconds = Histogram(
    "scheduling_instance_generation_duration_seconds",
    "Duration of a full instance generation run in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)
)

attendance_records_saved_total = Counter(
    "scheduling_attendance_records_saved_total",
    "Total attendance records saved",
    ["present"]
)


def track_request_metrics(method: str, endpoint: str, status_code: int, duration: float):
    """Track HTTP request metrics."""
    http_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)


def track_session_move(outcome: str):
    """Track a move outcome: applied, forced or rejected."""
    session_moves_total.labels(outcome=outcome).inc()


def track_conflicts(conflict_types: list[str]):
    for conflict_type in conflict_types:
        conflicts_detected_total.labels(type=conflict_type).inc()


def track_sessions_flagged(source: str, count: int):
    if count:
        sessions_flagged_total.labels(source=source).inc(count)


def track_sessions_placed(method: str, count: int):
    if count:
        sessions_placed_total.labels(method=method).inc(count)


def track_instances_created(count: int):
    if count:
        instances_created_total.inc(count)


def track_instance_generation(duration: float):
    instance_generation_duration_seconds.observe(duration)


def track_attendance_saved(present: bool):
    attendance_records_saved_total.labels(present=str(present).lower()).inc()


async def metrics_endpoint():
    """
    Prometheus metrics endpoint.

    Returns:
        Response with Prometheus metrics in text format
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

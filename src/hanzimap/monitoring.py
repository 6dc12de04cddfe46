"""Monitoring configuration for the client core."""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Sync metrics
sync_queue_size = Gauge(
    "hanzimap_sync_queue_size",
    "Number of actions waiting to be delivered to the remote store",
)

sync_actions = Counter(
    "hanzimap_sync_actions_total",
    "Sync action delivery outcomes",
    ["action_type", "outcome"],
)

sync_actions_dropped = Counter(
    "hanzimap_sync_actions_dropped_total",
    "Actions dropped without being delivered",
    ["action_type"],
)

# Remote API metrics
remote_request_duration = Histogram(
    "hanzimap_remote_request_duration_seconds",
    "Duration of remote store requests in seconds",
    ["endpoint"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)

# Quiz metrics
grades = Counter(
    "hanzimap_grades_total",
    "Total number of graded quiz answers",
    ["mode", "result"],
)

quiz_sessions = Counter(
    "hanzimap_quiz_sessions_total",
    "Total number of quiz sessions",
    ["mode", "outcome"],
)

# Local store metrics
store_errors = Counter(
    "hanzimap_store_errors_total",
    "Total number of local store errors",
    ["operation"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)

"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, Gauge, start_http_server


ARCHIVE_MESSAGE_TOTAL = Counter(
    "archive_message_total", "Total messages handled by the archiver", ["queue", "outcome"]
)
ARCHIVE_PERSIST_LATENCY_SECONDS = Histogram(
    "archive_persist_latency_seconds",
    "Time to write a single record to the store",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5),
)
ARCHIVE_JSON_RECOVERY_TOTAL = Counter(
    "archive_json_recovery_total", "Records stored after a failed JSON parse", ["queue"]
)
ARCHIVE_INFLIGHT_MESSAGES = Gauge(
    "archive_inflight_messages", "Deliveries currently being processed"
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)

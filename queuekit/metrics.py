"""Prometheus metrics for queue adapters and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Histogram, start_http_server

from queuekit.constants import RESULT_ERROR, RESULT_OK


QUEUE_OPERATION_TOTAL = Counter(
    "queue_operation_total", "Total queue operations by adapter", ["adapter", "operation", "result"]
)
QUEUE_OPERATION_LATENCY_SECONDS = Histogram(
    "queue_operation_latency_seconds",
    "Time spent in a single broker round trip",
    ["adapter", "operation"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 20),
)
QUEUE_MESSAGES_RECEIVED_TOTAL = Counter(
    "queue_messages_received_total", "Total messages handed to callers", ["adapter"]
)


@contextmanager
def observe(adapter: str, operation: str) -> Iterator[None]:
    """Count and time one operation, labelling the result ok/error."""
    start = time.perf_counter()
    try:
        yield
    except Exception:
        QUEUE_OPERATION_TOTAL.labels(adapter=adapter, operation=operation, result=RESULT_ERROR).inc()
        raise
    finally:
        QUEUE_OPERATION_LATENCY_SECONDS.labels(adapter=adapter, operation=operation).observe(
            time.perf_counter() - start
        )
    QUEUE_OPERATION_TOTAL.labels(adapter=adapter, operation=operation, result=RESULT_OK).inc()


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)

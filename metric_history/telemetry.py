"""Structured JSON logging and Prometheus metrics for the metric store."""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator

from prometheus_client import CollectorRegistry, Counter, Histogram


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

class _JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "cluster_id"):
            payload["cluster_id"] = record.cluster_id
        if hasattr(record, "correlation_id"):
            payload["correlation_id"] = record.correlation_id
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = str(record.exc_info[1])
        return json.dumps(payload)


def get_logger(name: str) -> logging.Logger:
    """Return a logger configured with JSON output.

    Args:
        name: Logger name (usually ``__name__``).

    Returns:
        Configured :class:`logging.Logger`.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(_JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

registry = CollectorRegistry()

store_operations_total = Counter(
    "metric_store_operations_total",
    "Total operations executed against the snapshot store",
    labelnames=["operation"],
    registry=registry,
)
store_operation_seconds = Histogram(
    "metric_store_operation_seconds",
    "Wall-clock time spent per store operation",
    labelnames=["operation"],
    registry=registry,
)
rows_pruned_total = Counter(
    "metric_store_rows_pruned_total",
    "Rows removed by retention pruning and explicit deletion",
    registry=registry,
)
decode_failures_total = Counter(
    "metric_store_decode_failures_total",
    "Stored mapping payloads that could not be decoded",
    labelnames=["column"],
    registry=registry,
)


@contextmanager
def track_operation(operation: str) -> Generator[None, None, None]:
    """Count and time one store operation."""
    start = time.perf_counter()
    try:
        yield
    finally:
        store_operations_total.labels(operation=operation).inc()
        store_operation_seconds.labels(operation=operation).observe(
            time.perf_counter() - start,
        )

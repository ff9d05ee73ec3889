"""Shared fixtures for metric store tests."""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import pytest

from metric_history.config import StoreConfig
from metric_history.database.connection import DatabaseConnection
from metric_history.database.repository import MetricRepository
from metric_history.schema import MetricSnapshot


@pytest.fixture
def config(tmp_path) -> StoreConfig:
    """File-backed config so WAL and migrations behave as in production."""
    return StoreConfig(database_url=f"sqlite:///{tmp_path / 'metrics.sqlite3'}")


@pytest.fixture
def connection(config: StoreConfig) -> DatabaseConnection:
    conn = DatabaseConnection(config)
    conn.initialize()
    yield conn
    conn.close()


@pytest.fixture
def repo(connection: DatabaseConnection) -> MetricRepository:
    return MetricRepository(connection)


def _make_snapshot(
    timestamp: float,
    *,
    hwm: int = 0,
    lag: int = 0,
    urp: int = 0,
    partitions: int = 0,
    brokers: int = 0,
    ping_ms: Optional[int] = None,
    topic_watermarks: Optional[Dict[str, int]] = None,
    consumer_group_lags: Optional[Dict[str, int]] = None,
    topic_lags: Optional[Dict[str, int]] = None,
    partition_lag_detail: Optional[Dict[str, int]] = None,
    **extra: Any,
) -> MetricSnapshot:
    """Build a raw snapshot with terse keyword names."""
    return MetricSnapshot(
        id=extra.pop("id", uuid.uuid4()),
        timestamp=timestamp,
        total_high_watermark=hwm,
        total_lag=lag,
        under_replicated_partitions=urp,
        total_partitions=partitions,
        broker_count=brokers,
        ping_ms=ping_ms,
        topic_watermarks=topic_watermarks or {},
        consumer_group_lags=consumer_group_lags or {},
        topic_lags=topic_lags or {},
        partition_lag_detail=partition_lag_detail or {},
        **extra,
    )


@pytest.fixture
def make_snapshot():
    """Factory fixture for raw snapshots."""
    return _make_snapshot

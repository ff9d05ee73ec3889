"""Metric store configuration: frozen dataclass with sensible defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from .schema import RetentionPolicy

DATABASE_FILE_NAME = "metrics.sqlite3"


def _default_database_url() -> str:
    data_dir = os.environ.get("XDG_DATA_HOME") or os.path.join(
        os.path.expanduser("~"), ".local", "share",
    )
    return f"sqlite:///{os.path.join(data_dir, 'metric-history', DATABASE_FILE_NAME)}"


@dataclass(frozen=True)
class StoreConfig:
    """Immutable configuration for the snapshot store.

    Attributes:
        database_url: SQLAlchemy connection string. One SQLite file per
            installation; ``sqlite:///:memory:`` is accepted for tests.
        metric_store_capacity: Default row limit for recency queries and
            the in-memory history buffer.
        retention_policy: Policy applied by scheduled pruning.
        gap_tolerance_factor: Multiplier on a point's granularity beyond
            which two consecutive chart points are treated as disconnected.
        poll_interval: Collector cadence in seconds, used as the expected
            spacing of raw snapshots. ``None`` when refresh is manual.
        wal_autocheckpoint_pages: SQLite ``wal_autocheckpoint`` threshold.
        echo_sql: Log every statement (debugging only).
    """

    # Database ----------------------------------------------------------------
    database_url: str = field(default_factory=_default_database_url)
    wal_autocheckpoint_pages: int = 1000
    echo_sql: bool = False

    # Retention ---------------------------------------------------------------
    metric_store_capacity: int = 3600
    retention_policy: RetentionPolicy = RetentionPolicy.SEVEN_DAYS

    # History buffer ----------------------------------------------------------
    gap_tolerance_factor: float = 2.0
    poll_interval: Optional[float] = None

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.metric_store_capacity < 1:
            raise ValueError("metric_store_capacity must be >= 1")
        if self.gap_tolerance_factor < 1.0:
            raise ValueError("gap_tolerance_factor must be >= 1.0")
        if self.wal_autocheckpoint_pages < 0:
            raise ValueError("wal_autocheckpoint_pages must be >= 0")
        if self.poll_interval is not None and self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if not self.database_url.startswith("sqlite"):
            raise ValueError("only sqlite database URLs are supported")

"""Pydantic v2 schemas and error types for the metric store.

Every model uses ``model_config = ConfigDict(frozen=True)`` for immutability.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

SECONDS_PER_DAY = 86_400

Int64 = Annotated[int, Field(strict=True, ge=INT64_MIN, le=INT64_MAX)]
Count = Annotated[int, Field(strict=True, ge=0, le=INT64_MAX)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RetentionPolicy(str, Enum):
    """Maximum age of stored snapshots."""
    ONE_DAY = "1d"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    UNLIMITED = "unlimited"

    @property
    def days(self) -> Optional[int]:
        return _RETENTION_DAYS[self]

    def cutoff(self, now: Optional[float] = None) -> Optional[float]:
        """Return the epoch-seconds instant before which rows expire.

        ``None`` means the policy never expires anything.
        """
        days = self.days
        if days is None:
            return None
        if now is None:
            now = time.time()
        return now - days * SECONDS_PER_DAY


_RETENTION_DAYS: Dict[RetentionPolicy, Optional[int]] = {
    RetentionPolicy.ONE_DAY: 1,
    RetentionPolicy.SEVEN_DAYS: 7,
    RetentionPolicy.THIRTY_DAYS: 30,
    RetentionPolicy.NINETY_DAYS: 90,
    RetentionPolicy.UNLIMITED: None,
}


class AggregationMode(str, Enum):
    """Statistic used to reduce a downsampling bucket."""
    MEAN = "mean"
    MIN = "min"
    MAX = "max"


# ---------------------------------------------------------------------------
# Snapshot model
# ---------------------------------------------------------------------------

class MetricSnapshot(BaseModel):
    """One point-in-time cluster health snapshot.

    ``granularity`` is ``0`` for a single raw poll and the bucket width in
    seconds for downsampled results.
    """
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: float
    granularity: float = Field(default=0.0, ge=0.0)

    topic_watermarks: Dict[str, Int64] = Field(default_factory=dict)
    consumer_group_lags: Dict[str, Int64] = Field(default_factory=dict)
    topic_lags: Dict[str, Int64] = Field(default_factory=dict)
    partition_lag_detail: Dict[str, Int64] = Field(default_factory=dict)

    total_high_watermark: Int64 = 0
    total_lag: Int64 = 0
    under_replicated_partitions: Count = 0
    total_partitions: Count = 0
    broker_count: Count = 0
    ping_ms: Optional[Int64] = None

    @property
    def captured_at(self) -> datetime:
        """Timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class TimestampBounds(BaseModel):
    """Oldest and newest stored timestamp for one cluster."""
    model_config = ConfigDict(frozen=True)

    min: float
    max: float


class RowDecodeFailure(BaseModel):
    """A stored row whose mapping payload could not be decoded."""
    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    column: str
    reason: str


class SnapshotPage(BaseModel):
    """Result of a read: decoded snapshots plus per-row decode failures."""
    model_config = ConfigDict(frozen=True)

    snapshots: List[MetricSnapshot] = Field(default_factory=list)
    failures: List[RowDecodeFailure] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.snapshots and not self.failures


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class MetricStoreError(Exception):
    """Base class for every error raised by the metric store."""


class StorageUnavailableError(MetricStoreError):
    """Raised when the database cannot be opened, created, or migrated."""

    def __init__(self, database_url: str, reason: str) -> None:
        self.database_url = database_url
        self.reason = reason
        super().__init__(f"Metric storage unavailable at {database_url}: {reason}")


class SnapshotWriteError(MetricStoreError):
    """Raised when inserting a snapshot fails. No partial row is left behind."""

    def __init__(self, snapshot_id: str, reason: str) -> None:
        self.snapshot_id = snapshot_id
        self.reason = reason
        super().__init__(f"Failed to write snapshot {snapshot_id}: {reason}")


class SnapshotValidationError(MetricStoreError, ValueError):
    """Raised when a snapshot is not well-formed for storage."""


class SnapshotDecodeError(MetricStoreError):
    """Raised when a stored mapping payload is malformed."""

    def __init__(self, column: str, reason: str, snapshot_id: str = "") -> None:
        self.column = column
        self.reason = reason
        self.snapshot_id = snapshot_id
        super().__init__(f"Cannot decode {column} of snapshot {snapshot_id or '?'}: {reason}")


class CheckpointError(MetricStoreError):
    """Raised when the write-ahead log could not be fully checkpointed."""


class WorkerClosedError(MetricStoreError):
    """Raised when a request is submitted to a closed store worker."""

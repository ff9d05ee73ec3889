"""Downsampling: bucket-width selection and per-bucket aggregation.

A requested span maps to a fixed bucket width so that roughly 300-400
points are rendered whatever the span. MIN/MAX of the scalar columns come
from one grouped query. Means and the mapping columns are reduced in
Python over a second, per-row query, so sums never overflow 64 bits and
mapping keys are averaged only over the rows that carry them.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import Float, Integer, bindparam, cast, func, select
from sqlalchemy.orm import Session

from ..database.codec import decode_mapping_columns, record_failure
from ..database.models import MAPPING_COLUMNS, SnapshotRow
from ..schema import (
    AggregationMode,
    MetricSnapshot,
    RowDecodeFailure,
    SnapshotDecodeError,
    SnapshotPage,
)
from ..telemetry import get_logger

_logger = get_logger(__name__)

# (inclusive upper bound of the span, bucket width); None means raw data
BUCKET_TIERS: Tuple[Tuple[int, Optional[int]], ...] = (
    (1_800, None),
    (3_600, 10),
    (21_600, 60),
    (86_400, 300),
    (604_800, 1_800),
)
LARGEST_BUCKET_SECONDS = 3_600

# Reduced with the caller's mode.
MODE_COLUMNS = (
    "total_high_watermark",
    "total_lag",
    "under_replicated_partitions",
    "ping_ms",
)
# Cluster topology counts: always the broadest state seen in the bucket.
TOPOLOGY_COLUMNS = ("total_partitions", "broker_count")


def bucket_seconds_for_range(span_seconds: float) -> Optional[int]:
    """Return the bucket width for a span, or ``None`` for raw data."""
    for upper, bucket in BUCKET_TIERS:
        if span_seconds <= upper:
            return bucket
    return LARGEST_BUCKET_SECONDS


# ---------------------------------------------------------------------------
# Pure reductions
# ---------------------------------------------------------------------------

def truncating_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator < 0) == (denominator < 0) else -quotient


def reduce_values(values: Sequence[int], mode: AggregationMode) -> int:
    """Reduce a non-empty sequence of integers with *mode*."""
    if not values:
        raise ValueError("cannot reduce an empty sequence")
    mode = AggregationMode(mode)
    if mode is AggregationMode.MIN:
        return min(values)
    if mode is AggregationMode.MAX:
        return max(values)
    return truncating_div(sum(values), len(values))


def aggregate_mappings(
    mappings: Sequence[Mapping[str, int]], mode: AggregationMode,
) -> Dict[str, int]:
    """Aggregate mappings per key over the union of their keys.

    A key missing from a mapping does not contribute to that key's value.
    The result is key-sorted.
    """
    collected: Dict[str, List[int]] = {}
    for mapping in mappings:
        for key, value in mapping.items():
            collected.setdefault(key, []).append(value)
    return {key: reduce_values(collected[key], mode) for key in sorted(collected)}


# ---------------------------------------------------------------------------
# SQL-backed downsampler
# ---------------------------------------------------------------------------

class Downsampler:
    """Aggregate one cluster's rows in ``[start, end]`` into fixed buckets.

    Args:
        bucket_seconds: Bucket width; must be positive.
        mode: Statistic applied to mode columns and mapping values.
    """

    def __init__(self, bucket_seconds: int, mode: AggregationMode) -> None:
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be > 0")
        self.bucket_seconds = int(bucket_seconds)
        self.mode = AggregationMode(mode)

    def _bucket_index(self) -> Any:
        width = bindparam("bucket_seconds", float(self.bucket_seconds), type_=Float)
        # CAST truncates toward zero, which is floor for non-negative epochs
        return cast(SnapshotRow.timestamp / width, Integer)

    def _aggregate_columns(self) -> List[Any]:
        columns: List[Any] = []
        for name in MODE_COLUMNS:
            col = getattr(SnapshotRow, name)
            # SQLite SUM overflows past int64, so means are taken per row
            if self.mode is AggregationMode.MIN:
                columns.append(func.min(col).label(name))
            elif self.mode is AggregationMode.MAX:
                columns.append(func.max(col).label(name))
        for name in TOPOLOGY_COLUMNS:
            columns.append(func.max(getattr(SnapshotRow, name)).label(name))
        return columns

    def _scalar_value(
        self, row: Any, name: str, per_row: Dict[str, List[int]],
    ) -> Optional[int]:
        if self.mode is AggregationMode.MEAN:
            values = per_row.get(name)
            return reduce_values(values, self.mode) if values else None
        value = getattr(row, name)
        return None if value is None else int(value)

    def load(
        self, session: Session, cluster_id: str, start: float, end: float,
    ) -> SnapshotPage:
        """Run the grouped aggregation and rebuild one snapshot per bucket.

        Returns:
            Buckets ordered oldest to newest; empty buckets are absent.
        """
        if start > end:
            return SnapshotPage()

        in_range = (
            SnapshotRow.cluster_id == cluster_id,
            SnapshotRow.timestamp >= start,
            SnapshotRow.timestamp <= end,
        )
        bucket = self._bucket_index().label("bucket")

        scalar_stmt = (
            select(bucket, *self._aggregate_columns())
            .where(*in_range)
            .group_by(bucket)
            .order_by(bucket)
        )
        scalars = session.execute(scalar_stmt).all()
        if not scalars:
            return SnapshotPage()

        mapping_stmt = (
            select(
                bucket,
                SnapshotRow.id,
                *(getattr(SnapshotRow, c) for c in MODE_COLUMNS),
                *(getattr(SnapshotRow, c) for c in MAPPING_COLUMNS),
            )
            .where(*in_range)
            .order_by(bucket, SnapshotRow.timestamp, SnapshotRow.id)
        )

        first_ids: Dict[int, str] = {}
        bucket_mappings: Dict[int, Dict[str, List[Dict[str, int]]]] = {}
        bucket_scalars: Dict[int, Dict[str, List[int]]] = {}
        failures: List[RowDecodeFailure] = []
        for row in session.execute(mapping_stmt):
            index = int(row.bucket)
            first_ids.setdefault(index, row.id)
            seen = bucket_scalars.setdefault(index, {c: [] for c in MODE_COLUMNS})
            for name in MODE_COLUMNS:
                value = getattr(row, name)
                if value is not None:
                    seen[name].append(int(value))
            per_column = bucket_mappings.setdefault(
                index, {c: [] for c in MAPPING_COLUMNS},
            )
            try:
                decoded = decode_mapping_columns(row, row.id)
            except SnapshotDecodeError as exc:
                # row still counts towards the scalars
                failures.append(record_failure(exc))
                continue
            for column, mapping in decoded.items():
                per_column[column].append(mapping)

        snapshots: List[MetricSnapshot] = []
        for row in scalars:
            index = int(row.bucket)
            per_column = bucket_mappings.get(index, {c: [] for c in MAPPING_COLUMNS})
            values: Dict[str, Any] = {
                name: self._scalar_value(row, name, bucket_scalars.get(index, {}))
                for name in MODE_COLUMNS
            }
            for name in TOPOLOGY_COLUMNS:
                values[name] = int(getattr(row, name))
            snapshots.append(
                MetricSnapshot(
                    id=self._snapshot_id(first_ids.get(index), cluster_id, index),
                    timestamp=float(index * self.bucket_seconds),
                    granularity=float(self.bucket_seconds),
                    total_high_watermark=values["total_high_watermark"],
                    total_lag=values["total_lag"],
                    under_replicated_partitions=values["under_replicated_partitions"],
                    total_partitions=values["total_partitions"],
                    broker_count=values["broker_count"],
                    ping_ms=values["ping_ms"],
                    **{
                        column: aggregate_mappings(per_column[column], self.mode)
                        for column in MAPPING_COLUMNS
                    },
                )
            )

        _logger.debug(
            "Downsampled %s into %d bucket(s) of %ds (%s)",
            cluster_id, len(snapshots), self.bucket_seconds, self.mode.value,
        )
        return SnapshotPage(snapshots=snapshots, failures=failures)

    def _snapshot_id(self, row_id: Optional[str], cluster_id: str, index: int) -> uuid.UUID:
        if row_id is not None:
            try:
                return uuid.UUID(row_id)
            except ValueError:
                pass
        return uuid.uuid5(
            uuid.NAMESPACE_URL, f"{cluster_id}/{self.bucket_seconds}/{index}",
        )

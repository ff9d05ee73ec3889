"""Snapshot repository: insert, range reads, downsampling, and pruning."""

from __future__ import annotations

import uuid
from typing import Any, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from ..analysis.downsampler import Downsampler, bucket_seconds_for_range
from ..schema import (
    AggregationMode,
    MetricSnapshot,
    RetentionPolicy,
    RowDecodeFailure,
    SnapshotDecodeError,
    SnapshotPage,
    SnapshotValidationError,
    SnapshotWriteError,
    TimestampBounds,
)
from ..telemetry import get_logger, rows_pruned_total, track_operation
from .codec import decode_mapping_columns, encode_mapping, record_failure
from .connection import DatabaseConnection
from .models import SnapshotRow

_logger = get_logger(__name__)

ClusterId = Union[str, uuid.UUID]


class MetricRepository:
    """High-level data-access layer over the snapshot table.

    Not safe for concurrent use: callers serialise access, normally through
    :class:`metric_history.worker.MetricStoreWorker`.

    Args:
        connection: An initialised :class:`DatabaseConnection`.
    """

    def __init__(self, connection: DatabaseConnection) -> None:
        self._conn = connection

    @property
    def capacity(self) -> int:
        return self._conn.config.metric_store_capacity

    # ------------------------------------------------------------------
    # Insert
    # ------------------------------------------------------------------

    def insert(self, snapshot: MetricSnapshot, cluster_id: ClusterId) -> None:
        """Insert one raw snapshot for *cluster_id*.

        Args:
            snapshot: Fully populated snapshot; ``granularity`` must be ``0``.
            cluster_id: Opaque cluster correlation key.

        Raises:
            SnapshotValidationError: If the snapshot is not a raw poll.
            SnapshotWriteError: If the row cannot be written (duplicate id,
                disk full, ...). Nothing is persisted in that case.
        """
        if snapshot.granularity != 0:
            raise SnapshotValidationError(
                f"raw snapshots must have granularity 0, got {snapshot.granularity}"
            )
        row = SnapshotRow(
            id=str(snapshot.id),
            cluster_id=str(cluster_id),
            timestamp=snapshot.timestamp,
            granularity=0.0,
            topic_watermarks=encode_mapping(snapshot.topic_watermarks),
            consumer_group_lags=encode_mapping(snapshot.consumer_group_lags),
            topic_lags=encode_mapping(snapshot.topic_lags),
            partition_lag_detail=encode_mapping(snapshot.partition_lag_detail),
            total_high_watermark=snapshot.total_high_watermark,
            total_lag=snapshot.total_lag,
            under_replicated_partitions=snapshot.under_replicated_partitions,
            total_partitions=snapshot.total_partitions,
            broker_count=snapshot.broker_count,
            ping_ms=snapshot.ping_ms,
        )
        with track_operation("insert"):
            try:
                with self._conn.session() as sess:
                    sess.add(row)
            except SQLAlchemyError as exc:
                _logger.error(
                    "Insert of snapshot %s failed: %s", snapshot.id, exc,
                    extra={"cluster_id": str(cluster_id)},
                )
                raise SnapshotWriteError(str(snapshot.id), str(exc)) from exc

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load_recent_snapshots(
        self, cluster_id: ClusterId, limit: Optional[int] = None,
    ) -> SnapshotPage:
        """Return at most *limit* newest snapshots, ordered oldest first.

        Args:
            cluster_id: Cluster to read.
            limit: Row cap; defaults to the configured store capacity.

        Returns:
            A :class:`SnapshotPage`; rows that fail to decode are listed in
            ``failures`` instead of ``snapshots``.
        """
        if limit is None:
            limit = self.capacity
        if limit <= 0:
            return SnapshotPage()
        with track_operation("load_recent"), self._conn.session() as sess:
            stmt = (
                select(SnapshotRow)
                .where(SnapshotRow.cluster_id == str(cluster_id))
                .order_by(SnapshotRow.timestamp.desc(), SnapshotRow.id.desc())
                .limit(limit)
            )
            rows = sess.execute(stmt).scalars().all()
            return self._page(reversed(rows))

    def load_snapshots(
        self, cluster_id: ClusterId, start: float, end: float,
    ) -> SnapshotPage:
        """Return every snapshot with ``start <= timestamp <= end``, oldest first."""
        if start > end:
            return SnapshotPage()
        with track_operation("load_range"), self._conn.session() as sess:
            stmt = (
                select(SnapshotRow)
                .where(
                    SnapshotRow.cluster_id == str(cluster_id),
                    SnapshotRow.timestamp >= start,
                    SnapshotRow.timestamp <= end,
                )
                .order_by(SnapshotRow.timestamp.asc(), SnapshotRow.id.asc())
            )
            rows = sess.execute(stmt).scalars().all()
            return self._page(rows)

    def timestamp_bounds(self, cluster_id: ClusterId) -> Optional[TimestampBounds]:
        """Return the oldest and newest timestamp, or ``None`` without data."""
        with track_operation("timestamp_bounds"), self._conn.session() as sess:
            stmt = select(
                func.min(SnapshotRow.timestamp), func.max(SnapshotRow.timestamp),
            ).where(SnapshotRow.cluster_id == str(cluster_id))
            lowest, highest = sess.execute(stmt).one()
        if lowest is None or highest is None:
            return None
        return TimestampBounds(min=float(lowest), max=float(highest))

    # ------------------------------------------------------------------
    # Downsampling
    # ------------------------------------------------------------------

    def load_downsampled_snapshots(
        self,
        cluster_id: ClusterId,
        start: float,
        end: float,
        bucket_seconds: int,
        mode: AggregationMode = AggregationMode.MEAN,
    ) -> SnapshotPage:
        """Aggregate ``[start, end]`` into *bucket_seconds*-wide buckets.

        Args:
            cluster_id: Cluster to read.
            start: Inclusive lower bound (epoch seconds).
            end: Inclusive upper bound (epoch seconds).
            bucket_seconds: Bucket width in seconds.
            mode: Statistic for the mode columns and mapping values.

        Returns:
            One synthesized snapshot per non-empty bucket, oldest first,
            each with ``granularity == bucket_seconds``.

        Raises:
            ValueError: If *bucket_seconds* is not positive.
        """
        downsampler = Downsampler(bucket_seconds, mode)
        with track_operation("load_downsampled"), self._conn.session() as sess:
            return downsampler.load(sess, str(cluster_id), start, end)

    def load_history(
        self,
        cluster_id: ClusterId,
        start: float,
        end: float,
        mode: AggregationMode = AggregationMode.MEAN,
    ) -> SnapshotPage:
        """Load ``[start, end]`` at the resolution its span calls for.

        Short spans come back raw; longer ones are downsampled with the
        bucket width from :func:`bucket_seconds_for_range`.
        """
        bucket_seconds = bucket_seconds_for_range(end - start)
        if bucket_seconds is None:
            return self.load_snapshots(cluster_id, start, end)
        return self.load_downsampled_snapshots(
            cluster_id, start, end, bucket_seconds, mode,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def prune_all_clusters(
        self, policy: RetentionPolicy, now: Optional[float] = None,
    ) -> int:
        """Delete rows older than the policy's cutoff across every cluster.

        Args:
            policy: Retention policy; ``unlimited`` deletes nothing.
            now: Reference instant (epoch seconds); defaults to the clock.

        Returns:
            Number of deleted rows.
        """
        policy = RetentionPolicy(policy)
        cutoff = policy.cutoff(now)
        if cutoff is None:
            return 0
        with track_operation("prune"), self._conn.session() as sess:
            result = sess.execute(delete(SnapshotRow).where(SnapshotRow.timestamp < cutoff))
            deleted = int(result.rowcount or 0)
        rows_pruned_total.inc(deleted)
        _logger.info("Pruned %d snapshot(s) older than %s", deleted, policy.value)
        return deleted

    def delete_cluster_data(self, cluster_id: ClusterId) -> int:
        """Delete every row of one cluster. Returns the number deleted."""
        with track_operation("delete_cluster"), self._conn.session() as sess:
            result = sess.execute(
                delete(SnapshotRow).where(SnapshotRow.cluster_id == str(cluster_id))
            )
            deleted = int(result.rowcount or 0)
        rows_pruned_total.inc(deleted)
        _logger.info(
            "Deleted %d snapshot(s) for cluster", deleted,
            extra={"cluster_id": str(cluster_id)},
        )
        return deleted

    def delete_all_data(self) -> int:
        """Delete every row in the store. Returns the number deleted."""
        with track_operation("delete_all"), self._conn.session() as sess:
            result = sess.execute(delete(SnapshotRow))
            deleted = int(result.rowcount or 0)
        rows_pruned_total.inc(deleted)
        _logger.info("Deleted all %d snapshot(s)", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _page(self, rows: Any) -> SnapshotPage:
        snapshots: List[MetricSnapshot] = []
        failures: List[RowDecodeFailure] = []
        for row in rows:
            try:
                snapshots.append(self._row_to_snapshot(row))
            except SnapshotDecodeError as exc:
                failures.append(record_failure(exc))
        return SnapshotPage(snapshots=snapshots, failures=failures)

    @staticmethod
    def _row_to_snapshot(row: SnapshotRow) -> MetricSnapshot:
        mappings = decode_mapping_columns(row, row.id)
        try:
            return MetricSnapshot(
                id=row.id,
                timestamp=row.timestamp,
                granularity=row.granularity,
                total_high_watermark=row.total_high_watermark,
                total_lag=row.total_lag,
                under_replicated_partitions=row.under_replicated_partitions,
                total_partitions=row.total_partitions,
                broker_count=row.broker_count,
                ping_ms=row.ping_ms,
                **mappings,
            )
        except ValidationError as exc:
            raise SnapshotDecodeError("row", str(exc), row.id) from exc

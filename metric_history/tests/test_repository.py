"""Tests for metric_history.database.repository."""

from __future__ import annotations

import logging
import uuid

import pytest
from sqlalchemy import text

from metric_history.config import StoreConfig
from metric_history.database.connection import DatabaseConnection
from metric_history.database.repository import MetricRepository
from metric_history.schema import (
    RetentionPolicy,
    SnapshotValidationError,
    SnapshotWriteError,
)

DAY = 86_400
NOW = 1_700_000_000.0


class TestInsertAndRead:
    def test_round_trip_preserves_fields(self, repo: MetricRepository, make_snapshot) -> None:
        snap = make_snapshot(
            NOW,
            hwm=9_000_000_000,
            lag=-5,
            urp=1,
            partitions=24,
            brokers=3,
            ping_ms=12,
            topic_watermarks={"orders": 100, "users": 7},
            consumer_group_lags={"billing": 42},
            topic_lags={"orders": 40},
            partition_lag_detail={"orders-0": 30, "orders-1": 10},
        )
        repo.insert(snap, "cluster-a")
        page = repo.load_recent_snapshots("cluster-a")
        assert page.snapshots == [snap]
        assert page.failures == []

    def test_uuid_cluster_id(self, repo: MetricRepository, make_snapshot) -> None:
        cluster = uuid.uuid4()
        repo.insert(make_snapshot(NOW), cluster)
        assert len(repo.load_recent_snapshots(str(cluster)).snapshots) == 1

    def test_duplicate_id_rejected(self, repo: MetricRepository, make_snapshot) -> None:
        snap = make_snapshot(NOW)
        repo.insert(snap, "cluster-a")
        with pytest.raises(SnapshotWriteError) as exc_info:
            repo.insert(snap, "cluster-a")
        assert exc_info.value.snapshot_id == str(snap.id)
        assert len(repo.load_recent_snapshots("cluster-a").snapshots) == 1

    def test_downsampled_snapshot_rejected(self, repo: MetricRepository, make_snapshot) -> None:
        with pytest.raises(SnapshotValidationError):
            repo.insert(make_snapshot(NOW, granularity=60.0), "cluster-a")
        assert repo.load_recent_snapshots("cluster-a").is_empty


class TestRecent:
    def test_limit_keeps_newest_oldest_first(self, repo: MetricRepository, make_snapshot) -> None:
        for i in range(5):
            repo.insert(make_snapshot(NOW + i, hwm=i), "cluster-a")
        page = repo.load_recent_snapshots("cluster-a", limit=3)
        assert [s.total_high_watermark for s in page.snapshots] == [2, 3, 4]

    def test_default_limit_is_capacity(self, tmp_path, make_snapshot) -> None:
        cfg = StoreConfig(
            database_url=f"sqlite:///{tmp_path / 'small.sqlite3'}",
            metric_store_capacity=2,
        )
        conn = DatabaseConnection(cfg)
        conn.initialize()
        repo = MetricRepository(conn)
        for i in range(4):
            repo.insert(make_snapshot(NOW + i), "cluster-a")
        assert len(repo.load_recent_snapshots("cluster-a").snapshots) == 2
        conn.close()

    def test_zero_limit(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(NOW), "cluster-a")
        assert repo.load_recent_snapshots("cluster-a", limit=0).is_empty

    def test_unknown_cluster(self, repo: MetricRepository) -> None:
        assert repo.load_recent_snapshots("nope").is_empty

    def test_out_of_order_inserts_come_back_sorted(
        self, repo: MetricRepository, make_snapshot,
    ) -> None:
        for ts in (300.0, 100.0, 400.0, 200.0):
            repo.insert(make_snapshot(ts), "cluster-a")
        page = repo.load_recent_snapshots("cluster-a", limit=3)
        assert [s.timestamp for s in page.snapshots] == [200.0, 300.0, 400.0]


class TestRange:
    def test_bounds_are_inclusive(self, repo: MetricRepository, make_snapshot) -> None:
        for ts in (100.0, 200.0, 300.0, 400.0):
            repo.insert(make_snapshot(ts), "cluster-a")
        page = repo.load_snapshots("cluster-a", 200.0, 300.0)
        assert [s.timestamp for s in page.snapshots] == [200.0, 300.0]

    def test_out_of_order_inserts_come_back_sorted(
        self, repo: MetricRepository, make_snapshot,
    ) -> None:
        for ts in (300.0, 100.0, 400.0, 200.0):
            repo.insert(make_snapshot(ts), "cluster-a")
        page = repo.load_snapshots("cluster-a", 100.0, 300.0)
        assert [s.timestamp for s in page.snapshots] == [100.0, 200.0, 300.0]

    def test_inverted_range_is_empty(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(200.0), "cluster-a")
        assert repo.load_snapshots("cluster-a", 300.0, 100.0).is_empty

    def test_other_clusters_excluded(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(200.0), "cluster-a")
        repo.insert(make_snapshot(200.0), "cluster-b")
        assert len(repo.load_snapshots("cluster-a", 0.0, 1_000.0).snapshots) == 1


class TestTimestampBounds:
    def test_no_data(self, repo: MetricRepository) -> None:
        assert repo.timestamp_bounds("cluster-a") is None

    def test_single_row(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(150.0), "cluster-a")
        bounds = repo.timestamp_bounds("cluster-a")
        assert bounds is not None
        assert bounds.min == bounds.max == 150.0

    def test_min_and_max(self, repo: MetricRepository, make_snapshot) -> None:
        for ts in (300.0, 100.0, 200.0):
            repo.insert(make_snapshot(ts), "cluster-a")
        bounds = repo.timestamp_bounds("cluster-a")
        assert (bounds.min, bounds.max) == (100.0, 300.0)


class TestPruneAndDelete:
    def test_prune_removes_only_expired(self, repo: MetricRepository, make_snapshot) -> None:
        old = make_snapshot(NOW - 8 * DAY)
        fresh = make_snapshot(NOW - 1 * DAY)
        repo.insert(old, "cluster-a")
        repo.insert(make_snapshot(NOW - 9 * DAY), "cluster-b")
        repo.insert(fresh, "cluster-a")
        deleted = repo.prune_all_clusters(RetentionPolicy.SEVEN_DAYS, now=NOW)
        assert deleted == 2
        assert repo.load_recent_snapshots("cluster-a").snapshots == [fresh]
        assert repo.load_recent_snapshots("cluster-b").is_empty

    def test_prune_cutoff_is_exclusive(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(NOW - DAY), "cluster-a")
        assert repo.prune_all_clusters(RetentionPolicy.ONE_DAY, now=NOW) == 0

    def test_prune_accepts_policy_value(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(NOW - 31 * DAY), "cluster-a")
        assert repo.prune_all_clusters("30d", now=NOW) == 1

    def test_unlimited_is_noop(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(0.0), "cluster-a")
        assert repo.prune_all_clusters(RetentionPolicy.UNLIMITED, now=NOW) == 0
        assert len(repo.load_recent_snapshots("cluster-a").snapshots) == 1

    def test_delete_cluster(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(NOW), "cluster-a")
        repo.insert(make_snapshot(NOW + 1), "cluster-a")
        repo.insert(make_snapshot(NOW), "cluster-b")
        assert repo.delete_cluster_data("cluster-a") == 2
        assert repo.load_recent_snapshots("cluster-a").is_empty
        assert len(repo.load_recent_snapshots("cluster-b").snapshots) == 1

    def test_delete_all(self, repo: MetricRepository, make_snapshot) -> None:
        repo.insert(make_snapshot(NOW), "cluster-a")
        repo.insert(make_snapshot(NOW), "cluster-b")
        assert repo.delete_all_data() == 2
        assert repo.timestamp_bounds("cluster-a") is None
        assert repo.timestamp_bounds("cluster-b") is None

    def test_prune_log_is_lazily_formatted(self, repo: MetricRepository, make_snapshot, caplog) -> None:
        repo.insert(make_snapshot(NOW - 8 * DAY), "cluster-a")
        with caplog.at_level(logging.INFO, logger="metric_history.database.repository"):
            repo.prune_all_clusters(RetentionPolicy.SEVEN_DAYS, now=NOW)
        record = next(r for r in caplog.records if r.msg.startswith("Pruned"))
        assert record.args == (1, "7d")
        assert record.getMessage() == "Pruned 1 snapshot(s) older than 7d"

    def test_delete_log_carries_cluster_id(self, repo: MetricRepository, make_snapshot, caplog) -> None:
        repo.insert(make_snapshot(NOW), "cluster-a")
        with caplog.at_level(logging.INFO, logger="metric_history.database.repository"):
            repo.delete_cluster_data("cluster-a")
        record = next(r for r in caplog.records if r.msg.startswith("Deleted"))
        assert record.cluster_id == "cluster-a"
        assert record.args == (1,)


class TestDecodeFailures:
    def _corrupt(self, repo: MetricRepository, snapshot_id: str, payload: str) -> None:
        with repo._conn.engine.begin() as conn:
            conn.execute(
                text("UPDATE metric_snapshots SET consumer_group_lags = :p WHERE id = :id"),
                {"p": payload, "id": snapshot_id},
            )

    @pytest.mark.parametrize("payload", ["{broken", "[1, 2]", '{"g": 1.5}', '{"g": true}'])
    def test_bad_row_listed_not_fatal(self, repo: MetricRepository, make_snapshot, payload) -> None:
        good = make_snapshot(NOW)
        bad = make_snapshot(NOW + 1)
        repo.insert(good, "cluster-a")
        repo.insert(bad, "cluster-a")
        self._corrupt(repo, str(bad.id), payload)

        page = repo.load_recent_snapshots("cluster-a")
        assert page.snapshots == [good]
        assert len(page.failures) == 1
        assert page.failures[0].snapshot_id == str(bad.id)
        assert page.failures[0].column == "consumer_group_lags"

    def test_range_read_reports_failure(self, repo: MetricRepository, make_snapshot) -> None:
        bad = make_snapshot(NOW)
        repo.insert(bad, "cluster-a")
        self._corrupt(repo, str(bad.id), '"text"')
        page = repo.load_snapshots("cluster-a", NOW - 1, NOW + 1)
        assert page.snapshots == []
        assert page.failures[0].reason.startswith("expected an object")

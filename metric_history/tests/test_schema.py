"""Tests for metric_history.schema."""

from __future__ import annotations

from datetime import timezone

import pytest
from pydantic import ValidationError

from metric_history.schema import (
    INT64_MAX,
    AggregationMode,
    MetricSnapshot,
    MetricStoreError,
    RetentionPolicy,
    SnapshotDecodeError,
    SnapshotPage,
    SnapshotValidationError,
    SnapshotWriteError,
    StorageUnavailableError,
)


class TestRetentionPolicy:
    @pytest.mark.parametrize(
        "policy, days",
        [
            (RetentionPolicy.ONE_DAY, 1),
            (RetentionPolicy.SEVEN_DAYS, 7),
            (RetentionPolicy.THIRTY_DAYS, 30),
            (RetentionPolicy.NINETY_DAYS, 90),
            (RetentionPolicy.UNLIMITED, None),
        ],
    )
    def test_days(self, policy: RetentionPolicy, days) -> None:
        assert policy.days == days

    def test_cutoff(self) -> None:
        assert RetentionPolicy.SEVEN_DAYS.cutoff(now=1_000_000.0) == 1_000_000.0 - 7 * 86_400

    def test_unlimited_has_no_cutoff(self) -> None:
        assert RetentionPolicy.UNLIMITED.cutoff(now=1.0) is None

    def test_from_value(self) -> None:
        assert RetentionPolicy("30d") is RetentionPolicy.THIRTY_DAYS


class TestMetricSnapshot:
    def test_defaults(self) -> None:
        snap = MetricSnapshot(timestamp=10.0)
        assert snap.granularity == 0.0
        assert snap.topic_watermarks == {}
        assert snap.ping_ms is None
        assert snap.id != MetricSnapshot(timestamp=10.0).id

    def test_frozen(self) -> None:
        snap = MetricSnapshot(timestamp=10.0)
        with pytest.raises(ValidationError):
            snap.total_lag = 5  # type: ignore[misc]

    def test_captured_at_is_utc(self) -> None:
        snap = MetricSnapshot(timestamp=0.0)
        assert snap.captured_at.tzinfo is timezone.utc
        assert snap.captured_at.year == 1970

    @pytest.mark.parametrize(
        "field, value",
        [
            ("total_high_watermark", INT64_MAX + 1),
            ("under_replicated_partitions", -1),
            ("broker_count", 1.5),
            ("granularity", -1.0),
        ],
    )
    def test_rejects_out_of_range(self, field: str, value) -> None:
        with pytest.raises(ValidationError):
            MetricSnapshot(timestamp=1.0, **{field: value})

    def test_mapping_values_must_be_int64(self) -> None:
        with pytest.raises(ValidationError):
            MetricSnapshot(timestamp=1.0, topic_lags={"t": INT64_MAX + 1})

    def test_json_round_trip(self) -> None:
        snap = MetricSnapshot(timestamp=5.0, consumer_group_lags={"g": 3}, ping_ms=4)
        assert MetricSnapshot.model_validate_json(snap.model_dump_json()) == snap


class TestSnapshotPage:
    def test_empty(self) -> None:
        assert SnapshotPage().is_empty
        assert not SnapshotPage(snapshots=[MetricSnapshot(timestamp=1.0)]).is_empty


class TestErrors:
    def test_hierarchy(self) -> None:
        for exc_type in (StorageUnavailableError, SnapshotWriteError, SnapshotDecodeError):
            assert issubclass(exc_type, MetricStoreError)
        assert issubclass(SnapshotValidationError, ValueError)

    def test_messages_carry_context(self) -> None:
        assert "sqlite:///x" in str(StorageUnavailableError("sqlite:///x", "locked"))
        assert "abc" in str(SnapshotWriteError("abc", "duplicate"))
        err = SnapshotDecodeError("topic_lags", "bad json", "id-1")
        assert "topic_lags" in str(err) and "id-1" in str(err)

    def test_aggregation_mode_values(self) -> None:
        assert {m.value for m in AggregationMode} == {"mean", "min", "max"}

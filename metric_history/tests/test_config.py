"""Tests for metric_history.config."""

from __future__ import annotations

import dataclasses

import pytest

from metric_history.config import DATABASE_FILE_NAME, StoreConfig
from metric_history.schema import RetentionPolicy


class TestStoreConfig:
    def test_defaults(self) -> None:
        cfg = StoreConfig(database_url="sqlite:///:memory:")
        assert cfg.metric_store_capacity == 3600
        assert cfg.retention_policy is RetentionPolicy.SEVEN_DAYS
        assert cfg.gap_tolerance_factor == 2.0
        assert cfg.poll_interval is None

    def test_default_url_under_data_home(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        url = StoreConfig().database_url
        assert url.startswith(f"sqlite:///{tmp_path}")
        assert url.endswith(DATABASE_FILE_NAME)

    def test_frozen(self) -> None:
        cfg = StoreConfig(database_url="sqlite:///:memory:")
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.metric_store_capacity = 10  # type: ignore[misc]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"metric_store_capacity": 0},
            {"gap_tolerance_factor": 0.5},
            {"wal_autocheckpoint_pages": -1},
            {"poll_interval": 0},
            {"database_url": "postgresql://localhost/metrics"},
        ],
    )
    def test_invalid(self, kwargs) -> None:
        kwargs.setdefault("database_url", "sqlite:///:memory:")
        with pytest.raises(ValueError):
            StoreConfig(**kwargs)

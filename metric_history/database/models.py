"""SQLAlchemy ORM model for the snapshot time-series table."""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class SnapshotRow(Base):
    """One persisted cluster-health snapshot.

    The four mapping columns hold JSON objects of ``str -> int``.
    ``topic_lags`` and ``partition_lag_detail`` were added after the first
    schema version; older files receive them through
    :mod:`metric_history.database.migrations`.
    """

    __tablename__ = "metric_snapshots"

    id = Column(String(36), primary_key=True)
    cluster_id = Column(String(64), nullable=False)
    timestamp = Column(Float, nullable=False)
    topic_watermarks = Column(Text, nullable=False, default="{}")
    consumer_group_lags = Column(Text, nullable=False, default="{}")
    total_high_watermark = Column(BigInteger, nullable=False, default=0)
    total_lag = Column(BigInteger, nullable=False, default=0)
    under_replicated_partitions = Column(BigInteger, nullable=False, default=0)
    total_partitions = Column(BigInteger, nullable=False, default=0)
    broker_count = Column(BigInteger, nullable=False, default=0)
    ping_ms = Column(BigInteger, nullable=True)
    granularity = Column(Float, nullable=False, default=0.0)
    topic_lags = Column(Text, nullable=False, default="{}", server_default="{}")
    partition_lag_detail = Column(Text, nullable=False, default="{}", server_default="{}")

    __table_args__ = (
        Index("ix_metric_snapshots_cluster_timestamp", "cluster_id", "timestamp"),
    )


MAPPING_COLUMNS = (
    "topic_watermarks",
    "consumer_group_lags",
    "topic_lags",
    "partition_lag_detail",
)

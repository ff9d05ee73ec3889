"""Chart series derived from a bounded window of snapshots.

:class:`MetricHistory` keeps the most recent snapshots in memory (loaded
from the store or recorded live) and turns them into throughput, lag,
ping, and ISR-health series. Consecutive points are split into segments
wherever the gap between them exceeds the expected spacing, so charts do
not draw lines across collection outages.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Iterable, List, Optional

from ..config import StoreConfig
from ..schema import MetricSnapshot
from ..telemetry import get_logger

_logger = get_logger(__name__)

CLUSTER_SERIES = "__cluster__"


@dataclass(frozen=True)
class ThroughputPoint:
    """Messages per second between two consecutive snapshots."""

    timestamp: float
    topic: str
    messages_per_second: float
    segment: int


@dataclass(frozen=True)
class LagPoint:
    timestamp: float
    group: str
    total_lag: int
    segment: int


@dataclass(frozen=True)
class PingPoint:
    timestamp: float
    ms: int
    segment: int


@dataclass(frozen=True)
class ISRHealthPoint:
    """Share of partitions that are fully replicated."""

    timestamp: float
    healthy_ratio: float
    segment: int


class MetricHistory:
    """Ring buffer of recent snapshots with derived chart series.

    Args:
        capacity: Maximum snapshots kept; the oldest are dropped first.
        gap_tolerance: Gap multiplier beyond which two points are
            disconnected.
        poll_interval: Expected spacing of raw (granularity ``0``) points.
            Without it, any gap between two raw points breaks the segment.
    """

    def __init__(
        self,
        capacity: int = 3600,
        gap_tolerance: float = 2.0,
        poll_interval: Optional[float] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._snapshots: Deque[MetricSnapshot] = deque(maxlen=capacity)
        self._gap_tolerance = gap_tolerance
        self._poll_interval = poll_interval
        self.data_epoch = 0

    @classmethod
    def from_config(cls, config: StoreConfig) -> "MetricHistory":
        return cls(
            capacity=config.metric_store_capacity,
            gap_tolerance=config.gap_tolerance_factor,
            poll_interval=config.poll_interval,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def record(self, snapshot: MetricSnapshot) -> None:
        """Append one live snapshot."""
        self._snapshots.append(snapshot)

    def load_historical(self, snapshots: Iterable[MetricSnapshot]) -> None:
        """Replace the buffer with snapshots loaded from the store."""
        self._snapshots.clear()
        self._snapshots.extend(snapshots)
        self.data_epoch += 1
        _logger.debug("Loaded %d historical snapshot(s)", len(self._snapshots))

    def clear(self) -> None:
        self._snapshots.clear()
        self.data_epoch += 1

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def snapshots(self) -> List[MetricSnapshot]:
        return list(self._snapshots)

    @property
    def has_enough_data(self) -> bool:
        return len(self._snapshots) >= 2

    @property
    def current_granularity(self) -> float:
        """Granularity of the newest point, ``0`` when empty."""
        return self._snapshots[-1].granularity if self._snapshots else 0.0

    @property
    def known_topics(self) -> List[str]:
        topics = set()
        for snap in self._snapshots:
            topics.update(snap.topic_watermarks)
        return sorted(topics)

    @property
    def known_groups(self) -> List[str]:
        groups = set()
        for snap in self._snapshots:
            groups.update(snap.consumer_group_lags)
        return sorted(groups)

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    def segments(self) -> List[int]:
        """Segment number of every buffered point, in order."""
        snaps = self._snapshots
        if not snaps:
            return []
        result = [0]
        current = 0
        for i in range(1, len(snaps)):
            gap = snaps[i].timestamp - snaps[i - 1].timestamp
            if gap > self._expected_spacing(snaps[i - 1], snaps[i]) * self._gap_tolerance:
                current += 1
            result.append(current)
        return result

    def _expected_spacing(self, prev: MetricSnapshot, curr: MetricSnapshot) -> float:
        if prev.granularity > 0:
            return prev.granularity
        if curr.granularity > 0:
            return curr.granularity
        return self._poll_interval or 0.0

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    def cluster_throughput(self) -> List[ThroughputPoint]:
        return self._throughput(CLUSTER_SERIES, lambda s: s.total_high_watermark)

    def throughput_series(self, topic: str) -> List[ThroughputPoint]:
        """Per-topic throughput; a topic absent from a snapshot counts as 0."""
        return self._throughput(topic, lambda s: s.topic_watermarks.get(topic, 0))

    def _throughput(
        self, label: str, watermark: Callable[[MetricSnapshot], int],
    ) -> List[ThroughputPoint]:
        snaps = self._snapshots
        segments = self.segments()
        points: List[ThroughputPoint] = []
        for i in range(1, len(snaps)):
            if segments[i] != segments[i - 1]:
                continue
            prev, curr = snaps[i - 1], snaps[i]
            dt = curr.timestamp - prev.timestamp
            if dt <= 0:
                continue
            # watermark resets (topic recreated) clamp to zero
            delta = max(0, watermark(curr) - watermark(prev))
            points.append(
                ThroughputPoint(
                    timestamp=curr.timestamp,
                    topic=label,
                    messages_per_second=delta / dt,
                    segment=segments[i],
                )
            )
        return points

    def cluster_lag_series(self) -> List[LagPoint]:
        return [
            LagPoint(timestamp=s.timestamp, group=CLUSTER_SERIES, total_lag=s.total_lag, segment=seg)
            for seg, s in zip(self.segments(), self._snapshots)
        ]

    def lag_series(self, group: str) -> List[LagPoint]:
        """Lag of one consumer group; snapshots without the group are skipped."""
        return [
            LagPoint(
                timestamp=s.timestamp,
                group=group,
                total_lag=s.consumer_group_lags[group],
                segment=seg,
            )
            for seg, s in zip(self.segments(), self._snapshots)
            if group in s.consumer_group_lags
        ]

    def ping_series(self) -> List[PingPoint]:
        return [
            PingPoint(timestamp=s.timestamp, ms=s.ping_ms, segment=seg)
            for seg, s in zip(self.segments(), self._snapshots)
            if s.ping_ms is not None
        ]

    def isr_health_series(self) -> List[ISRHealthPoint]:
        points: List[ISRHealthPoint] = []
        for seg, s in zip(self.segments(), self._snapshots):
            if s.total_partitions > 0:
                ratio = (s.total_partitions - s.under_replicated_partitions) / s.total_partitions
            else:
                ratio = 1.0
            points.append(
                ISRHealthPoint(timestamp=s.timestamp, healthy_ratio=ratio, segment=seg)
            )
        return points

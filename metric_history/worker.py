"""Single-owner store worker: every operation runs on one dedicated thread.

The worker is the only holder of the database connection. Requests are
queued on a one-thread executor, so two operations never touch the
connection at the same time and each one either completes or fails as a
whole. Cancelling an awaiting caller abandons the wait; the queued
operation still runs to completion.
"""

from __future__ import annotations

import asyncio
import functools
import shutil
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

from .config import StoreConfig
from .database.connection import DatabaseConnection
from .database.repository import ClusterId, MetricRepository
from .schema import (
    AggregationMode,
    MetricSnapshot,
    MetricStoreError,
    RetentionPolicy,
    SnapshotPage,
    TimestampBounds,
    WorkerClosedError,
)
from .telemetry import get_logger

_logger = get_logger(__name__)
T = TypeVar("T")


class MetricStoreWorker:
    """Serialised async facade over :class:`MetricRepository`.

    Args:
        config: Store configuration.

    Example::

        async with MetricStoreWorker(StoreConfig(database_url=url)) as store:
            await store.insert(snapshot, cluster_id)
            page = await store.load_recent_snapshots(cluster_id, limit=100)
    """

    def __init__(self, config: Optional[StoreConfig] = None) -> None:
        self.config = config or StoreConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="metric-store",
        )
        self._conn: Optional[DatabaseConnection] = None
        self._repo: Optional[MetricRepository] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open, create, and migrate the database on the worker thread.

        Raises:
            StorageUnavailableError: If the store cannot be opened. The
                worker is closed and must be discarded.
        """
        try:
            await self._run(self._open)
        except MetricStoreError:
            await self.close()
            raise

    def _open(self) -> None:
        conn = DatabaseConnection(self.config)
        try:
            conn.initialize()
        except MetricStoreError:
            conn.close()
            raise
        self._conn = conn
        self._repo = MetricRepository(conn)

    async def close(self) -> None:
        """Finish queued requests, dispose the engine, and stop the thread."""
        if self._closed:
            return
        self._closed = True
        loop = asyncio.get_running_loop()
        if self._conn is not None:
            await loop.run_in_executor(self._executor, self._conn.close)
        self._executor.shutdown(wait=True)
        self._conn = None
        self._repo = None

    async def __aenter__(self) -> "MetricStoreWorker":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def database_path(self) -> Optional[str]:
        return self._conn.database_path if self._conn is not None else None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if self._closed:
            raise WorkerClosedError("metric store worker is closed")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._executor, functools.partial(fn, *args, **kwargs),
            )
        except RuntimeError as exc:
            if self._closed:
                raise WorkerClosedError("metric store worker is closed") from exc
            raise

    def _repository(self) -> MetricRepository:
        if self._repo is None:
            raise MetricStoreError("metric store worker has not been started")
        return self._repo

    def _connection(self) -> DatabaseConnection:
        if self._conn is None:
            raise MetricStoreError("metric store worker has not been started")
        return self._conn

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def insert(self, snapshot: MetricSnapshot, cluster_id: ClusterId) -> None:
        await self._run(lambda: self._repository().insert(snapshot, cluster_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def load_recent_snapshots(
        self, cluster_id: ClusterId, limit: Optional[int] = None,
    ) -> SnapshotPage:
        return await self._run(
            lambda: self._repository().load_recent_snapshots(cluster_id, limit),
        )

    async def load_snapshots(
        self, cluster_id: ClusterId, start: float, end: float,
    ) -> SnapshotPage:
        return await self._run(
            lambda: self._repository().load_snapshots(cluster_id, start, end),
        )

    async def load_downsampled_snapshots(
        self,
        cluster_id: ClusterId,
        start: float,
        end: float,
        bucket_seconds: int,
        mode: AggregationMode = AggregationMode.MEAN,
    ) -> SnapshotPage:
        return await self._run(
            lambda: self._repository().load_downsampled_snapshots(
                cluster_id, start, end, bucket_seconds, mode,
            ),
        )

    async def load_history(
        self,
        cluster_id: ClusterId,
        start: float,
        end: float,
        mode: AggregationMode = AggregationMode.MEAN,
    ) -> SnapshotPage:
        return await self._run(
            lambda: self._repository().load_history(cluster_id, start, end, mode),
        )

    async def timestamp_bounds(self, cluster_id: ClusterId) -> Optional[TimestampBounds]:
        return await self._run(lambda: self._repository().timestamp_bounds(cluster_id))

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def prune_all_clusters(
        self, policy: RetentionPolicy, now: Optional[float] = None,
    ) -> int:
        return await self._run(
            lambda: self._repository().prune_all_clusters(policy, now),
        )

    async def delete_cluster_data(self, cluster_id: ClusterId) -> int:
        return await self._run(lambda: self._repository().delete_cluster_data(cluster_id))

    async def delete_all_data(self) -> int:
        return await self._run(lambda: self._repository().delete_all_data())

    async def checkpoint(self) -> None:
        """Merge the write-ahead log into the main file.

        Await this before any external process copies the database file.
        """
        await self._run(lambda: self._connection().checkpoint())

    async def journal_mode(self) -> str:
        return await self._run(lambda: self._connection().journal_mode())

    async def copy_database(self, destination: str) -> None:
        """Checkpoint and copy the main file as one queued operation.

        No write can slip in between the checkpoint and the copy.
        """

        def _checkpoint_and_copy() -> None:
            conn = self._connection()
            source = conn.database_path
            if source is None:
                raise MetricStoreError("an in-memory store has no file to copy")
            conn.checkpoint()
            shutil.copy2(source, destination)

        await self._run(_checkpoint_and_copy)
        _logger.info("Copied metric database to %s", destination)

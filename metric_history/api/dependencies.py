"""Shared FastAPI dependencies: the store worker singleton."""

from __future__ import annotations

from typing import Optional

from ..config import StoreConfig
from ..schema import StorageUnavailableError
from ..worker import MetricStoreWorker

# Module-level singletons (initialised at startup)
_config: Optional[StoreConfig] = None
_worker: Optional[MetricStoreWorker] = None


def configure(config: StoreConfig) -> None:
    """Set the configuration used by the next :func:`init_dependencies`."""
    global _config  # noqa: PLW0603
    _config = config


async def init_dependencies(config: Optional[StoreConfig] = None) -> None:
    """Start the store worker.  Called once during app startup."""
    global _config, _worker  # noqa: PLW0603
    _config = config or _config or StoreConfig()
    worker = MetricStoreWorker(_config)
    await worker.start()
    _worker = worker


async def shutdown_dependencies() -> None:
    """Close the store worker on shutdown."""
    global _worker  # noqa: PLW0603
    if _worker is not None:
        await _worker.close()
    _worker = None


def get_config() -> StoreConfig:
    """Return the shared :class:`StoreConfig`."""
    return _config or StoreConfig()


def get_worker() -> MetricStoreWorker:
    """Return the running :class:`MetricStoreWorker`."""
    if _worker is None or _worker.closed:
        raise StorageUnavailableError(get_config().database_url, "store is not running")
    return _worker

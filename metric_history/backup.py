"""Backup support: consistent export and restore of the database file.

The main file and its ``-wal`` / ``-shm`` side files form one logical unit.
Exports checkpoint first so the main file alone is complete; restores drop
any stale side files so SQLite cannot replay an old log over the new file.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Union

from .database.connection import SIDE_FILE_SUFFIXES
from .schema import MetricStoreError
from .telemetry import get_logger
from .worker import MetricStoreWorker

_logger = get_logger(__name__)

SQLITE_HEADER = b"SQLite format 3\x00"

PathLike = Union[str, os.PathLike]


class BackupError(MetricStoreError):
    """Raised when a backup file cannot be exported or restored."""


async def export_database(worker: MetricStoreWorker, destination: PathLike) -> Path:
    """Write a self-contained copy of the live database to *destination*.

    Args:
        worker: A started store worker.
        destination: Target file path; parent directories are created.

    Returns:
        The destination path.
    """
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    await worker.copy_database(str(target))
    _logger.info("Exported metric database (%d bytes)", target.stat().st_size)
    return target


def restore_database(source: PathLike, database_path: PathLike) -> Path:
    """Replace the database file at *database_path* with *source*.

    The store owning *database_path* must be closed first and reopened
    afterwards.

    Raises:
        BackupError: If *source* is not an SQLite database file.
    """
    src = Path(source)
    dest = Path(database_path)
    with src.open("rb") as fh:
        if fh.read(len(SQLITE_HEADER)) != SQLITE_HEADER:
            raise BackupError(f"{src} is not an SQLite database")

    dest.parent.mkdir(parents=True, exist_ok=True)
    for suffix in SIDE_FILE_SUFFIXES:
        side = dest.with_name(dest.name + suffix)
        if side.exists():
            side.unlink()
            _logger.info("Removed stale %s", side.name)

    fd, tmp_name = tempfile.mkstemp(prefix=dest.name, suffix=".restore", dir=dest.parent)
    os.close(fd)
    try:
        shutil.copyfile(src, tmp_name)
        os.replace(tmp_name, dest)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    _logger.info("Restored metric database from %s", src)
    return dest

"""Database connection management: engine, WAL, schema, checkpoint."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, Generator, List, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import StoreConfig
from ..schema import CheckpointError, StorageUnavailableError
from ..telemetry import get_logger
from .migrations import apply_migrations
from .models import Base

_logger = get_logger(__name__)

SIDE_FILE_SUFFIXES = ("-wal", "-shm")


class DatabaseConnection:
    """Manage the SQLAlchemy engine and session factory for one database file.

    Every new DBAPI connection switches the file to write-ahead logging.
    Nothing touches the disk until :meth:`initialize` runs.

    Args:
        config: Store configuration (uses ``database_url``).

    Raises:
        StorageUnavailableError: If the URL cannot be turned into an engine.
    """

    def __init__(self, config: Optional[StoreConfig] = None) -> None:
        self.config = config or StoreConfig()
        url = self.config.database_url

        engine_kwargs: dict = {
            "connect_args": {"check_same_thread": False},
            "echo": self.config.echo_sql,
        }
        if ":memory:" in url:
            engine_kwargs["poolclass"] = StaticPool

        try:
            self._engine: Engine = create_engine(url, **engine_kwargs)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(url, str(exc)) from exc

        if self.database_path is not None:
            event.listen(self._engine, "connect", self._on_connect)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    def _on_connect(self, dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(
                f"PRAGMA wal_autocheckpoint={int(self.config.wal_autocheckpoint_pages)}"
            )
        finally:
            cursor.close()

    @property
    def engine(self) -> Engine:
        """Return the SQLAlchemy engine."""
        return self._engine

    @property
    def database_path(self) -> Optional[str]:
        """Path of the main database file, or ``None`` for in-memory stores."""
        database = self._engine.url.database
        if not database or database == ":memory:":
            return None
        return os.path.abspath(database)

    def side_files(self) -> List[str]:
        """Write-ahead-log side files belonging to the main file."""
        path = self.database_path
        if path is None:
            return []
        return [path + suffix for suffix in SIDE_FILE_SUFFIXES]

    def initialize(self) -> None:
        """Open or create the file, create the schema, and migrate it.

        Raises:
            StorageUnavailableError: If any step fails. The store must not
                be used afterwards.
        """
        url = self.config.database_url
        try:
            path = self.database_path
            if path is not None:
                os.makedirs(os.path.dirname(path), exist_ok=True)
            Base.metadata.create_all(self._engine)
            # create_all skips indexes of tables that already exist
            for table in Base.metadata.sorted_tables:
                for index in table.indexes:
                    index.create(self._engine, checkfirst=True)
            applied = apply_migrations(self._engine)
        except (OSError, SQLAlchemyError) as exc:
            _logger.error("Cannot initialise metric storage: %s", exc)
            raise StorageUnavailableError(url, str(exc)) from exc
        _logger.info(
            "Metric storage ready at %s (%d migration(s) applied)",
            self.database_path or ":memory:", len(applied),
        )

    def journal_mode(self) -> str:
        """Return the active SQLite journal mode (``wal`` for file stores)."""
        with self._engine.connect() as conn:
            return str(conn.exec_driver_sql("PRAGMA journal_mode").scalar_one()).lower()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Context manager yielding a :class:`Session`.

        Commits on success, rolls back on exception, and always closes.
        """
        sess: Session = self._session_factory()
        try:
            yield sess
            sess.commit()
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    def checkpoint(self) -> None:
        """Merge the write-ahead log into the main file and truncate it.

        Must complete before anything copies the database file.

        Raises:
            CheckpointError: If SQLite reports the checkpoint as blocked.
        """
        with self._engine.connect() as conn:
            busy, log_frames, checkpointed = conn.exec_driver_sql(
                "PRAGMA wal_checkpoint(TRUNCATE)"
            ).one()
        if busy:
            raise CheckpointError(
                f"WAL checkpoint blocked ({checkpointed}/{log_frames} frames merged)"
            )
        _logger.info("WAL checkpoint complete")

    def close(self) -> None:
        """Dispose the engine and release connection pool."""
        self._engine.dispose()
        _logger.info("Database connection closed")

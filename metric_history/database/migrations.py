"""Ordered, idempotent, additive schema migrations.

Each migration adds one column. A migration is applied only when the
column is missing from the live table, so running the list against a fresh
file (where the ORM already created every column) or an already-migrated
file changes nothing except ``PRAGMA user_version``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Set

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine

from ..telemetry import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    """Add ``column`` to ``table`` with the given column definition."""

    version: int
    description: str
    table: str
    column: str
    ddl: str


MIGRATIONS: Sequence[Migration] = (
    Migration(
        version=1,
        description="per-topic aggregate lag",
        table="metric_snapshots",
        column="topic_lags",
        ddl="TEXT NOT NULL DEFAULT '{}'",
    ),
    Migration(
        version=2,
        description="per-partition lag detail",
        table="metric_snapshots",
        column="partition_lag_detail",
        ddl="TEXT NOT NULL DEFAULT '{}'",
    ),
)


def schema_version(conn: Connection) -> int:
    """Return the file's ``PRAGMA user_version``."""
    return int(conn.exec_driver_sql("PRAGMA user_version").scalar_one())


def apply_migrations(
    engine: Engine, migrations: Sequence[Migration] = MIGRATIONS,
) -> List[int]:
    """Apply every missing migration inside one transaction.

    Args:
        engine: Engine bound to the database file.
        migrations: Migrations to consider, in any order.

    Returns:
        Versions that actually altered the schema.
    """
    ordered = sorted(migrations, key=lambda m: m.version)
    applied: List[int] = []
    with engine.begin() as conn:
        inspector = inspect(conn)
        columns: Dict[str, Set[str]] = {}
        for migration in ordered:
            if migration.table not in columns:
                columns[migration.table] = {
                    c["name"] for c in inspector.get_columns(migration.table)
                }
            if migration.column in columns[migration.table]:
                continue
            conn.exec_driver_sql(
                f'ALTER TABLE "{migration.table}" '
                f'ADD COLUMN "{migration.column}" {migration.ddl}'
            )
            columns[migration.table].add(migration.column)
            applied.append(migration.version)
            _logger.info(
                "Applied migration %d: %s", migration.version, migration.description,
            )

        target = ordered[-1].version if ordered else 0
        if schema_version(conn) < target:
            conn.exec_driver_sql(f"PRAGMA user_version = {int(target)}")
    return applied

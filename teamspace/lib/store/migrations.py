"""Database schema migrations and initialization."""

import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path

from teamspace.lib.store.sqlite import connect

logger = logging.getLogger(__name__)


def load_migrations(migrations_dir: Path) -> list[tuple[str, str]]:
    """Load numbered .sql files (001_*.sql, 002_*.sql, ...) in lexical order.

    Returns:
        List of (migration_name, sql_content) tuples
    """
    if not migrations_dir.exists():
        return []

    return [(sql_file.stem, sql_file.read_text()) for sql_file in sorted(migrations_dir.glob("*.sql"))]


def ensure_schema(
    db_path: Path,
    migs: list[tuple[str, str | Callable]] | None = None,
) -> None:
    """Ensure schema exists and apply migrations."""
    conn = connect(db_path)
    try:
        if migs:
            migrate(conn, migs)
    finally:
        conn.close()


def migrate(conn: sqlite3.Connection, migs: list[tuple[str, str | Callable]]) -> None:
    """Apply pending migrations with data loss safeguards."""
    conn.execute("CREATE TABLE IF NOT EXISTS _migrations (name TEXT PRIMARY KEY)")

    for name, migration in migs:
        applied = conn.execute("SELECT 1 FROM _migrations WHERE name = ?", (name,)).fetchone()
        if applied:
            continue
        try:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name != '_migrations' AND name != 'sqlite_sequence'"
            )
            tables = [row[0] for row in cursor.fetchall()]
            before = {t: _get_table_count(conn, t) for t in tables}

            if callable(migration):
                migration(conn)
            elif ";" in migration:
                conn.executescript(migration)
            else:
                conn.execute(migration)

            for table, count_before in before.items():
                _check_migration_safety(conn, table, count_before)

            conn.execute("INSERT OR IGNORE INTO _migrations (name) VALUES (?)", (name,))
            logger.info(f"Migration '{name}' applied")
        except Exception as e:
            if conn.in_transaction:
                conn.rollback()
            logger.error(f"Migration '{name}' failed: {e}")
            raise


def _get_table_count(conn: sqlite3.Connection, table: str) -> int:
    """Row count for table, 0 if it doesn't exist."""
    try:
        exists = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?",
            (table,),
        ).fetchone()[0]
        if not exists:
            return 0
        result = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return result[0] if result else 0
    except sqlite3.OperationalError:
        return 0


def _check_migration_safety(
    conn: sqlite3.Connection, table: str, before: int, allow_loss: int = 0
) -> None:
    """Raise if a migration dropped more rows than allow_loss."""
    after = _get_table_count(conn, table)
    lost = before - after

    if lost > allow_loss:
        msg = f"Migration {table}: {lost} rows lost (before: {before}, after: {after})"
        logger.error(msg)
        raise ValueError(msg)

    if lost > 0:
        logger.warning(f"Migration {table}: {lost} rows removed (allow_loss={allow_loss})")

import contextlib
import sqlite3
import threading
from collections.abc import Iterator
from dataclasses import fields
from pathlib import Path
from typing import Any, TypeVar

from teamspace.lib import paths
from teamspace.lib.store import migrations
from teamspace.lib.store.sqlite import connect

T = TypeVar("T")

Row = sqlite3.Row

_DB_FILE = "teamspace.db"
_connections = threading.local()
_open: list[sqlite3.Connection] = []
_open_lock = threading.Lock()
_migrated: set[str] = set()
_scope_locks: dict[str, threading.RLock] = {}


def db_path() -> Path:
    return paths.dot_teamspace() / _DB_FILE


def database_exists() -> bool:
    return db_path().exists()


def from_row(row: dict[str, Any] | Any, dataclass_type: type[T]) -> T:
    """Convert dict-like row to dataclass instance, ignoring unknown columns."""
    field_names = {f.name for f in fields(dataclass_type)}
    row_dict = dict(row) if not isinstance(row, dict) else row
    kwargs = {key: row_dict[key] for key in field_names if key in row_dict}
    return dataclass_type(**kwargs)


def ensure() -> sqlite3.Connection:
    """Ensure teamspace.db exists with migrations applied.

    Returns a connection cached per thread and per database path.
    """
    path = db_path()
    cache_key = str(path)

    conn = getattr(_connections, cache_key, None)
    if conn is not None:
        return conn

    path.parent.mkdir(parents=True, exist_ok=True)

    with _open_lock:
        if cache_key not in _migrated:
            migrations.ensure_schema(path, migrations.load_migrations(paths.migrations_dir()))
            _migrated.add(cache_key)

    conn = connect(path)
    setattr(_connections, cache_key, conn)
    with _open_lock:
        _open.append(conn)
    return conn


def _scope_lock(scope: str) -> threading.RLock:
    with _open_lock:
        lock = _scope_locks.get(scope)
        if lock is None:
            lock = _scope_locks[scope] = threading.RLock()
        return lock


@contextlib.contextmanager
def transaction(scope: str) -> Iterator[sqlite3.Connection]:
    """Serialize writes for one scope (a team name).

    In-process: a re-entrant lock per scope. Cross-process: BEGIN IMMEDIATE takes the
    SQLite write lock up front, so the read-modify-write inside cannot lose updates.
    Nested use on the same thread joins the outer transaction.
    """
    with _scope_lock(scope):
        conn = ensure()
        if conn.in_transaction:
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")


def close_all() -> None:
    """Close every cached connection, across threads."""
    global _connections
    with _open_lock:
        for conn in _open:
            with contextlib.suppress(sqlite3.Error):
                conn.close()
        _open.clear()
    _connections = threading.local()


def _reset_for_testing() -> None:
    close_all()
    with _open_lock:
        _migrated.clear()
        _scope_locks.clear()

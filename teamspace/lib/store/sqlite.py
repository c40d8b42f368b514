"""SQLite connections for the team store."""

import logging
import sqlite3
import time
from pathlib import Path

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000
_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}",
    "PRAGMA journal_mode = WAL",
)
_OPEN_ATTEMPTS = 5
_SLOW_OPEN = 0.1


def connect(db_path: Path) -> sqlite3.Connection:
    """Open the store in autocommit mode with WAL and a busy timeout.

    Writers open their own transactions with BEGIN IMMEDIATE, so a second process
    waits on the busy timeout instead of failing. Switching to WAL while another
    process holds the lock is retried a few times.
    """
    start = time.perf_counter()
    for attempt in range(1, _OPEN_ATTEMPTS + 1):
        conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            for pragma in _PRAGMAS:
                conn.execute(pragma)
        except sqlite3.OperationalError as e:
            conn.close()
            if "locked" not in str(e).lower() or attempt == _OPEN_ATTEMPTS:
                raise
            time.sleep(0.05 * attempt)
            continue
        break

    elapsed = time.perf_counter() - start
    if elapsed > _SLOW_OPEN:
        logger.warning(f"Opening {db_path.name} took {elapsed:.3f}s (lock contention)")
    return conn

"""Database connection management and utilities."""

from teamspace.lib.store.connection import (
    Row,
    _reset_for_testing,
    close_all,
    database_exists,
    db_path,
    ensure,
    from_row,
    transaction,
)
from teamspace.lib.store.sqlite import connect

__all__ = [
    "ensure",
    "transaction",
    "from_row",
    "Row",
    "database_exists",
    "db_path",
    "_reset_for_testing",
    "close_all",
    "connect",
]

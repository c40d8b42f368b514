"""Append-only audit log of lifecycle transitions."""

import time
from enum import Enum

from teamspace.lib import store
from teamspace.lib.store import from_row
from teamspace.lib.uuid7 import uuid7
from teamspace.models import Event


class EventSource(str, Enum):
    REGISTRY = "registry"
    INBOX = "inbox"
    TASKS = "tasks"
    LIFECYCLE = "lifecycle"


def _value(source: str) -> str:
    return source.value if isinstance(source, Enum) else source


def emit(
    source: str,
    event_type: str,
    team: str | None = None,
    agent_id: str | None = None,
    data: str | None = None,
) -> str:
    """Emit event to the log. Joins the caller's transaction when one is open."""
    if agent_id is not None and not agent_id.strip():
        raise ValueError("agent_id must be non-empty string if provided")

    event_id = uuid7()
    store.ensure().execute(
        "INSERT INTO events (event_id, source, event_type, team, agent_id, data, timestamp) VALUES (?, ?, ?, ?, ?, ?, ?)",
        (event_id, _value(source), event_type, team, agent_id, data, int(time.time())),
    )
    return event_id


def query(
    team: str | None = None,
    source: str | None = None,
    limit: int | None = None,
) -> list[Event]:
    """Events in emission order, optionally filtered."""
    conditions = []
    params: list = []
    if team is not None:
        conditions.append("team = ?")
        params.append(team)
    if source is not None:
        conditions.append("source = ?")
        params.append(_value(source))

    sql = "SELECT * FROM events"
    if conditions:
        sql += " WHERE " + " AND ".join(conditions)
    sql += " ORDER BY rowid"
    if limit:
        sql += " LIMIT ?"
        params.append(limit)

    rows = store.ensure().execute(sql, params).fetchall()
    return [from_row(row, Event) for row in rows]

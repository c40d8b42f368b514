"""Inbox operations: per-(team, recipient) append-only queues with read tracking."""

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime

from teamspace import events
from teamspace.errors import TeamNotFound
from teamspace.events import EventSource
from teamspace.lib import store
from teamspace.lib.uuid7 import uuid7
from teamspace.models import Broadcast, Message, Payload, PlainMessage

from . import codec

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

_COLUMNS = "seq, message_id, team, recipient, sender, text, summary, color, kind, payload, created_at, read"


def _row_to_message(row: store.Row) -> Message:
    return Message(
        message_id=row["message_id"],
        team=row["team"],
        recipient=row["recipient"],
        sender=row["sender"],
        text=row["text"],
        summary=row["summary"],
        payload=codec.decode(row["kind"], row["payload"]),
        color=row["color"],
        created_at=row["created_at"],
        read=bool(row["read"]),
        seq=row["seq"],
    )


def _require_team(conn, team: str) -> None:
    if not conn.execute("SELECT 1 FROM teams WHERE name = ?", (team,)).fetchone():
        raise TeamNotFound(f"Team '{team}' not found", team=team)


def _insert(
    conn,
    team: str,
    recipient: str,
    sender: str,
    text: str,
    summary: str,
    payload: Payload,
    color: str | None,
) -> Message:
    kind, raw = codec.encode(payload)
    message_id = uuid7()
    now = datetime.now().isoformat()
    cursor = conn.execute(
        "INSERT INTO messages (message_id, team, recipient, sender, text, summary, color, kind, payload, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (message_id, team, recipient, sender, text, summary, color, kind, raw, now),
    )
    return Message(
        message_id=message_id,
        team=team,
        recipient=recipient,
        sender=sender,
        text=text,
        summary=summary,
        payload=payload,
        color=color,
        created_at=now,
        seq=cursor.lastrowid,
    )


def append(
    team: str,
    recipient: str,
    sender: str,
    text: str,
    summary: str = "",
    payload: Payload | None = None,
    color: str | None = None,
) -> Message:
    """Append one message to recipient's queue. The queue is created on first use.

    Fails only when the team does not exist; content is never validated.
    """
    with store.transaction(team) as conn:
        _require_team(conn, team)
        message = _insert(conn, team, recipient, sender, text, summary, payload or PlainMessage(), color)
    logger.debug(f"{sender} -> {recipient}@{team}: {message.kind.value}")
    return message


class UnreadMessages:
    """Unread messages of one queue, in append order.

    Lazy: rows are fetched a page at a time. Finite: bounded by the newest message
    present when the view was created. Restartable: every iteration queries afresh.
    Iterating never changes read state.
    """

    def __init__(self, team: str, recipient: str, page_size: int = PAGE_SIZE):
        conn = store.ensure()
        _require_team(conn, team)
        self.team = team
        self.recipient = recipient
        self.page_size = page_size
        row = conn.execute(
            "SELECT MAX(seq) FROM messages WHERE team = ? AND recipient = ?",
            (team, recipient),
        ).fetchone()
        self.upper = row[0] or 0

    def __iter__(self) -> Iterator[Message]:
        last = 0
        while True:
            rows = (
                store.ensure()
                .execute(
                    f"SELECT {_COLUMNS} FROM messages WHERE team = ? AND recipient = ? AND read = 0 AND seq > ? AND seq <= ? ORDER BY seq LIMIT ?",
                    (self.team, self.recipient, last, self.upper, self.page_size),
                )
                .fetchall()
            )
            for row in rows:
                yield _row_to_message(row)
            if len(rows) < self.page_size:
                return
            last = rows[-1]["seq"]


def list_unread(team: str, recipient: str) -> UnreadMessages:
    return UnreadMessages(team, recipient)


def list_messages(team: str, recipient: str, include_read: bool = True) -> list[Message]:
    conn = store.ensure()
    _require_team(conn, team)
    query = f"SELECT {_COLUMNS} FROM messages WHERE team = ? AND recipient = ?"
    if not include_read:
        query += " AND read = 0"
    query += " ORDER BY seq"
    return [_row_to_message(row) for row in conn.execute(query, (team, recipient)).fetchall()]


def unread_count(team: str, recipient: str) -> int:
    row = (
        store.ensure()
        .execute(
            "SELECT COUNT(*) FROM messages WHERE team = ? AND recipient = ? AND read = 0",
            (team, recipient),
        )
        .fetchone()
    )
    return row[0]


def last_activity(team: str, member: str) -> str | None:
    """Timestamp of the newest message sent to or by member."""
    row = (
        store.ensure()
        .execute(
            "SELECT MAX(created_at) FROM messages WHERE team = ? AND (recipient = ? OR sender = ?)",
            (team, member, member),
        )
        .fetchone()
    )
    return row[0]


def mark_read(team: str, recipient: str, message_ids: Iterable[str]) -> int:
    """Mark messages read. Idempotent; returns how many flipped from unread."""
    ids = list(dict.fromkeys(message_ids))
    if not ids:
        return 0
    placeholders = ", ".join("?" for _ in ids)
    with store.transaction(team) as conn:
        _require_team(conn, team)
        cursor = conn.execute(
            f"UPDATE messages SET read = 1 WHERE team = ? AND recipient = ? AND read = 0 AND message_id IN ({placeholders})",
            (team, recipient, *ids),
        )
    return cursor.rowcount


def read_all(team: str, recipient: str) -> list[Message]:
    """Return unread messages and mark exactly those read, atomically."""
    with store.transaction(team) as conn:
        messages = list(UnreadMessages(team, recipient))
        if messages:
            conn.execute(
                "UPDATE messages SET read = 1 WHERE team = ? AND recipient = ? AND read = 0 AND seq <= ?",
                (team, recipient, messages[-1].seq),
            )
    for message in messages:
        message.read = True
    return messages


def broadcast(
    team: str,
    text: str,
    summary: str = "",
    sender: str = "team-lead",
    color: str | None = None,
) -> list[str]:
    """Append one copy to every active member's queue except the sender's.

    Expensive by nature: one row per active member. Prefer direct messages when
    only some members need the content. Returns the recipient names.
    """
    with store.transaction(team) as conn:
        _require_team(conn, team)
        rows = conn.execute(
            "SELECT name FROM members WHERE team = ? AND is_active = 1 ORDER BY joined_at, rowid",
            (team,),
        ).fetchall()
        recipients = [row["name"] for row in rows if row["name"] != sender]
        for recipient in recipients:
            _insert(conn, team, recipient, sender, text, summary, Broadcast(), color)
        events.emit(EventSource.INBOX, "broadcast", team=team, data=f"{len(recipients)} recipients")

    if len(recipients) > 10:
        logger.info(f"Broadcast in '{team}' fanned out to {len(recipients)} members")
    return recipients


__all__ = [
    "UnreadMessages",
    "append",
    "broadcast",
    "last_activity",
    "list_messages",
    "list_unread",
    "mark_read",
    "read_all",
    "unread_count",
]

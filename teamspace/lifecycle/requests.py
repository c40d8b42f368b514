"""Shutdown request records: one row per handshake."""

from datetime import datetime

from teamspace.errors import InvalidTransition, ShutdownRequestNotFound
from teamspace.lib import store
from teamspace.lib.store import from_row
from teamspace.lib.uuid7 import uuid7
from teamspace.models import ShutdownRecord, ShutdownStatus


def create(team: str, member: str, reason: str = "") -> ShutdownRecord:
    record = ShutdownRecord(
        request_id=uuid7(),
        team=team,
        member=member,
        reason=reason,
        created_at=datetime.now().isoformat(),
    )
    with store.transaction(team) as conn:
        conn.execute(
            "INSERT INTO shutdown_requests (request_id, team, member, reason, status, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (record.request_id, team, member, reason, ShutdownStatus.PENDING.value, record.created_at),
        )
    return record


def get(request_id: str) -> ShutdownRecord | None:
    row = (
        store.ensure()
        .execute("SELECT * FROM shutdown_requests WHERE request_id = ?", (request_id,))
        .fetchone()
    )
    return from_row(row, ShutdownRecord) if row else None


def require(request_id: str) -> ShutdownRecord:
    record = get(request_id)
    if record is None:
        raise ShutdownRequestNotFound(f"Shutdown request '{request_id}' not found")
    return record


def pending_for(team: str, member: str) -> ShutdownRecord | None:
    row = (
        store.ensure()
        .execute(
            "SELECT * FROM shutdown_requests WHERE team = ? AND member = ? AND status = ? ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (team, member, ShutdownStatus.PENDING.value),
        )
        .fetchone()
    )
    return from_row(row, ShutdownRecord) if row else None


def resolve(record: ShutdownRecord, status: ShutdownStatus, reason: str | None = None) -> None:
    """Close a pending request. Resolving twice is an error, never a silent overwrite."""
    with store.transaction(record.team) as conn:
        cursor = conn.execute(
            "UPDATE shutdown_requests SET status = ?, response_reason = ?, resolved_at = ? WHERE request_id = ? AND status = ?",
            (
                status.value,
                reason,
                datetime.now().isoformat(),
                record.request_id,
                ShutdownStatus.PENDING.value,
            ),
        )
        if cursor.rowcount == 0:
            current = get(record.request_id)
            raise InvalidTransition(
                f"Shutdown request '{record.request_id}' is already {current.status.value if current else 'gone'}",
                current=current.status.value if current else "missing",
                target=status.value,
                team=record.team,
                member=record.member,
            )

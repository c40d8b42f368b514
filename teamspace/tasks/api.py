"""Task graph operations: team-scoped tasks with blocking edges."""

import json
import logging
from datetime import datetime

from teamspace import events
from teamspace.errors import (
    InvalidTransition,
    MemberNotFound,
    TaskNotFound,
    TeamNotFound,
    WouldCreateCycle,
)
from teamspace.events import EventSource
from teamspace.lib import store
from teamspace.lib.uuid7 import short_id, suffix_pattern, uuid7
from teamspace.models import TASK_TRANSITIONS, Task, TaskStatus

from . import graph

logger = logging.getLogger(__name__)

_COLUMNS = "task_id, team, position, subject, description, status, owner, priority, tags, created_at, updated_at, archived_at"


def _require_team(conn, team: str) -> store.Row:
    row = conn.execute("SELECT settings FROM teams WHERE name = ?", (team,)).fetchone()
    if not row:
        raise TeamNotFound(f"Team '{team}' not found", team=team)
    return row


def _require_owner(conn, team: str, owner: str | None) -> None:
    if owner is None:
        return
    if not conn.execute(
        "SELECT 1 FROM members WHERE team = ? AND name = ?", (team, owner)
    ).fetchone():
        raise MemberNotFound(f"Owner '{owner}' is not a member of '{team}'", team=team, member=owner)


def _require_task_id(conn, team: str, task_id: str) -> str:
    if not conn.execute("SELECT 1 FROM tasks WHERE team = ? AND task_id = ?", (team, task_id)).fetchone():
        raise TaskNotFound(f"Task '{task_id}' not found in '{team}'", team=team, task_id=task_id)
    return task_id


def resolve_task_id(team: str, ref: str) -> str:
    """Full id for a full id or an unambiguous short id (the last 8+ characters).

    Only the CLI accepts short ids; every other operation here takes exact ids.
    """
    conn = store.ensure()
    _require_team(conn, team)
    if conn.execute("SELECT 1 FROM tasks WHERE team = ? AND task_id = ?", (team, ref)).fetchone():
        return ref
    try:
        pattern = suffix_pattern(ref)
    except ValueError as e:
        raise TaskNotFound(f"Task '{ref}' not found in '{team}': {e}", team=team, task_id=ref) from e
    rows = conn.execute(
        "SELECT task_id FROM tasks WHERE team = ? AND task_id LIKE ? ESCAPE '\\'", (team, pattern)
    ).fetchall()
    if len(rows) == 1:
        return rows[0]["task_id"]
    if len(rows) > 1:
        raise TaskNotFound(
            f"Ambiguous task id '{ref}' in '{team}': {[r['task_id'] for r in rows]}",
            team=team,
            task_id=ref,
        )
    raise TaskNotFound(f"Task '{ref}' not found in '{team}'", team=team, task_id=ref)


def _edges(conn, team: str) -> list[store.Row]:
    return conn.execute(
        """
        SELECT e.blocker_id, e.blocked_id
        FROM task_edges e
        JOIN tasks b ON b.task_id = e.blocked_id
        WHERE e.team = ?
        ORDER BY b.position, e.rowid
        """,
        (team,),
    ).fetchall()


def _adjacency(conn, team: str) -> tuple[list[str], dict[str, list[str]]]:
    order = [
        row["task_id"]
        for row in conn.execute(
            "SELECT task_id FROM tasks WHERE team = ? ORDER BY position", (team,)
        ).fetchall()
    ]
    adjacency: dict[str, list[str]] = {task_id: [] for task_id in order}
    for row in _edges(conn, team):
        adjacency.setdefault(row["blocker_id"], []).append(row["blocked_id"])
    return order, adjacency


def _row_to_task(conn, row: store.Row) -> Task:
    data = dict(row)
    data["tags"] = json.loads(data.get("tags") or "[]")
    task = Task(**data)
    task.status = TaskStatus(task.status)
    task.blocks = [
        r["blocked_id"]
        for r in conn.execute(
            "SELECT e.blocked_id FROM task_edges e JOIN tasks t ON t.task_id = e.blocked_id WHERE e.blocker_id = ? ORDER BY t.position",
            (task.task_id,),
        ).fetchall()
    ]
    task.blocked_by = [
        r["blocker_id"]
        for r in conn.execute(
            "SELECT e.blocker_id FROM task_edges e JOIN tasks t ON t.task_id = e.blocker_id WHERE e.blocked_id = ? ORDER BY t.position",
            (task.task_id,),
        ).fetchall()
    ]
    return task


def add_task(
    team: str,
    subject: str,
    owner: str | None = None,
    description: str = "",
    priority: str | None = None,
    tags: list[str] | None = None,
) -> str:
    if not subject or not subject.strip():
        raise ValueError("subject is required")

    task_id = uuid7()
    now = datetime.now().isoformat()
    with store.transaction(team) as conn:
        _require_team(conn, team)
        _require_owner(conn, team, owner)
        position = conn.execute(
            "SELECT COALESCE(MAX(position), 0) + 1 FROM tasks WHERE team = ?", (team,)
        ).fetchone()[0]
        conn.execute(
            f"INSERT INTO tasks ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                task_id,
                team,
                position,
                subject,
                description,
                TaskStatus.PENDING.value,
                owner,
                priority,
                json.dumps(tags or []),
                now,
                now,
                None,
            ),
        )
        events.emit(EventSource.TASKS, "task.create", team=team, data=task_id)
    return task_id


def get_task(team: str, task_id: str) -> Task | None:
    conn = store.ensure()
    try:
        full_id = _require_task_id(conn, team, task_id)
    except TaskNotFound:
        return None
    row = conn.execute(f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?", (full_id,)).fetchone()
    return _row_to_task(conn, row)


def require_task(team: str, task_id: str) -> Task:
    task = get_task(team, task_id)
    if task is None:
        raise TaskNotFound(f"Task '{task_id}' not found in '{team}'", team=team, task_id=task_id)
    return task


def list_tasks(
    team: str,
    status: str | None = None,
    owner: str | None = None,
    include_archived: bool = False,
) -> list[Task]:
    """Tasks in insertion order."""
    conn = store.ensure()
    _require_team(conn, team)

    conditions = ["team = ?"]
    params: list = [team]
    if status:
        conditions.append("status = ?")
        params.append(TaskStatus(status).value)
    if owner:
        conditions.append("owner = ?")
        params.append(owner)
    if not include_archived:
        conditions.append("archived_at IS NULL")

    query = f"SELECT {_COLUMNS} FROM tasks WHERE {' AND '.join(conditions)} ORDER BY position"
    return [_row_to_task(conn, row) for row in conn.execute(query, params).fetchall()]


def add_blocking_edge(team: str, blocker_id: str, blocked_id: str) -> None:
    """Record that blocker must finish before blocked.

    Rejected before any write if it would close a cycle: the edge is refused when
    blocker is already reachable from blocked along existing edges.
    """
    with store.transaction(team) as conn:
        _require_team(conn, team)
        blocker = _require_task_id(conn, team, blocker_id)
        blocked = _require_task_id(conn, team, blocked_id)

        if conn.execute(
            "SELECT 1 FROM task_edges WHERE blocker_id = ? AND blocked_id = ?", (blocker, blocked)
        ).fetchone():
            return

        _, adjacency = _adjacency(conn, team)
        if graph.reaches(adjacency, blocked, blocker):
            raise WouldCreateCycle(
                f"Edge {short_id(blocker)} -> {short_id(blocked)} would create a cycle in '{team}'",
                team=team,
                blocker_id=blocker,
                blocked_id=blocked,
            )

        conn.execute(
            "INSERT INTO task_edges (blocker_id, blocked_id, team, created_at) VALUES (?, ?, ?, ?)",
            (blocker, blocked, team, datetime.now().isoformat()),
        )
        events.emit(EventSource.TASKS, "edge.add", team=team, data=f"{blocker}->{blocked}")


def remove_blocking_edge(team: str, blocker_id: str, blocked_id: str) -> bool:
    """Explicit edge cleanup. Returns False if there was no such edge."""
    with store.transaction(team) as conn:
        _require_team(conn, team)
        blocker = _require_task_id(conn, team, blocker_id)
        blocked = _require_task_id(conn, team, blocked_id)
        cursor = conn.execute(
            "DELETE FROM task_edges WHERE blocker_id = ? AND blocked_id = ?", (blocker, blocked)
        )
        if cursor.rowcount:
            events.emit(EventSource.TASKS, "edge.remove", team=team, data=f"{blocker}->{blocked}")
    return cursor.rowcount > 0


def set_status(team: str, task_id: str, status: str) -> Task:
    """Move a task along pending -> in_progress -> completed|cancelled.

    Setting the current status again is a no-op. Edges are never touched: a completed
    blocker keeps its blocks/blocked_by entries until remove_blocking_edge.
    """
    target = TaskStatus(status)
    with store.transaction(team) as conn:
        settings_row = _require_team(conn, team)
        full_id = _require_task_id(conn, team, task_id)
        row = conn.execute(f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?", (full_id,)).fetchone()
        task = _row_to_task(conn, row)
        current = TaskStatus(task.status)

        if current == target:
            return task
        if target not in TASK_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Task {short_id(full_id)} cannot move from {current.value} to {target.value}",
                current=current.value,
                target=target.value,
                team=team,
                task_id=full_id,
            )

        if target == TaskStatus.IN_PROGRESS:
            limit = json.loads(settings_row["settings"] or "{}").get("max_concurrent_tasks")
            if limit:
                running = conn.execute(
                    "SELECT COUNT(*) FROM tasks WHERE team = ? AND status = ? AND archived_at IS NULL",
                    (team, TaskStatus.IN_PROGRESS.value),
                ).fetchone()[0]
                if running >= limit:
                    raise InvalidTransition(
                        f"Team '{team}' already has {running} tasks in progress (max {limit})",
                        current=current.value,
                        target=target.value,
                        team=team,
                        task_id=full_id,
                        invariant="max_concurrent_tasks",
                    )

        now = datetime.now().isoformat()
        conn.execute(
            "UPDATE tasks SET status = ?, updated_at = ? WHERE task_id = ?",
            (target.value, now, full_id),
        )
        events.emit(EventSource.TASKS, f"task.{target.value}", team=team, data=full_id)

    task.status = target
    task.updated_at = now
    return task


def assign_owner(team: str, task_id: str, owner: str | None) -> Task:
    with store.transaction(team) as conn:
        _require_team(conn, team)
        _require_owner(conn, team, owner)
        full_id = _require_task_id(conn, team, task_id)
        conn.execute(
            "UPDATE tasks SET owner = ?, updated_at = ? WHERE task_id = ?",
            (owner, datetime.now().isoformat(), full_id),
        )
    return require_task(team, full_id)


def archive_task(team: str, task_id: str) -> None:
    """Soft delete. Edges stay; clean them up explicitly if wanted."""
    with store.transaction(team) as conn:
        _require_team(conn, team)
        full_id = _require_task_id(conn, team, task_id)
        conn.execute(
            "UPDATE tasks SET archived_at = COALESCE(archived_at, ?) WHERE task_id = ?",
            (datetime.now().isoformat(), full_id),
        )


def find_roots(team: str) -> set[str]:
    """Non-archived tasks that nothing blocks."""
    conn = store.ensure()
    _require_team(conn, team)
    rows = conn.execute(
        """
        SELECT t.task_id FROM tasks t
        WHERE t.team = ? AND t.archived_at IS NULL
          AND NOT EXISTS (SELECT 1 FROM task_edges e WHERE e.blocked_id = t.task_id)
        """,
        (team,),
    ).fetchall()
    return {row["task_id"] for row in rows}


def detect_cycles(team: str) -> list[list[str]]:
    """All cycles reachable by DFS over stored edges, in task insertion order."""
    conn = store.ensure()
    _require_team(conn, team)
    order, adjacency = _adjacency(conn, team)
    cycles = graph.find_cycles(order, adjacency)
    if cycles:
        logger.warning(f"Team '{team}' task graph has {len(cycles)} cycle(s)")
    return cycles


__all__ = [
    "add_blocking_edge",
    "add_task",
    "archive_task",
    "assign_owner",
    "detect_cycles",
    "find_roots",
    "get_task",
    "list_tasks",
    "remove_blocking_edge",
    "require_task",
    "resolve_task_id",
    "set_status",
]

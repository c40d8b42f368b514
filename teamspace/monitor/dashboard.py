"""Markdown team dashboard: members, tasks, recent inbox traffic, health checks."""

from collections.abc import Callable
from datetime import datetime

from teamspace import inbox, registry, tasks
from teamspace.lib.uuid7 import short_id
from teamspace.models import Member, MemberState, Task, TaskStatus
from teamspace.tasks.format import STATUS_SYMBOLS

from .orphans import find_orphans

ACTIVE_WINDOW = 300
IDLE_WINDOW = 3600
RECENT_MESSAGES = 5
PREVIEW_LENGTH = 60
LARGE_INBOX = 1000


def _age(timestamp: str | None, now: datetime) -> float | None:
    if not timestamp:
        return None
    return (now - datetime.fromisoformat(timestamp)).total_seconds()


def format_relative(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    seconds = int(max(seconds, 0))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def member_status(member: Member, alive: bool, idle_for: float | None) -> str:
    if not member.is_active:
        return "⚫ Inactive"
    if not alive:
        return "🔴 Offline"
    if idle_for is None:
        return "🟡 Idle"
    if idle_for < ACTIVE_WINDOW:
        return "🟢 Active"
    if idle_for < IDLE_WINDOW:
        return "🟡 Idle"
    return "🟠 Stale"


def _percent(part: int, total: int) -> int:
    return part * 100 // total if total else 0


def _preview(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= PREVIEW_LENGTH else text[: PREVIEW_LENGTH - 3] + "..."


def _task_rows(task_list: list[Task]) -> list[str]:
    rows = ["| ID | Subject | Owner | Status | Priority | Blocked By |", "|----|---------|-------|--------|----------|-----------|"]
    for task in task_list:
        status = TaskStatus(task.status).value
        blocked = f"{len(task.blocked_by)} tasks" if task.blocked_by else "-"
        rows.append(
            f"| {short_id(task.task_id)} | {task.subject} | {task.owner or '-'} | "
            f"{STATUS_SYMBOLS.get(status, '❓')} {status} | {task.priority or '-'} | {blocked} |"
        )
    return rows


def render(
    team: str,
    is_alive: Callable[[str], bool] | None = None,
    panes: list | None = None,
    now: datetime | None = None,
) -> str:
    """Render the dashboard for one team.

    ``is_alive`` checks a backend reference; without it every active member is
    assumed live. ``panes`` (from TmuxBackend.list_panes) enables the orphan check.
    """
    now = now or datetime.now()
    record = registry.require_team(team)
    task_list = tasks.list_tasks(team)
    counts = {status: 0 for status in TaskStatus}
    for task in task_list:
        counts[TaskStatus(task.status)] += 1
    total = len(task_list)

    lines = [
        f"# Team Dashboard: {team}",
        "",
        f"**Generated:** {now.isoformat(timespec='seconds')}",
        "",
        "## Overview",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| **Team Name** | {team} |",
        f"| **Created** | {record.created_at or 'N/A'} |",
        f"| **Total Members** | {len(record.members)} |",
        f"| **Active Members** | {len(record.active_members)} |",
        f"| **Total Tasks** | {total} |",
    ]
    for status, label in (
        (TaskStatus.COMPLETED, "Completed Tasks"),
        (TaskStatus.IN_PROGRESS, "In Progress"),
        (TaskStatus.PENDING, "Pending"),
    ):
        lines.append(f"| **{label}** | {counts[status]} ({_percent(counts[status], total)}%) |")

    lines += [
        "",
        "## Members",
        "",
        "| Name | Role | Model | Status | Last Activity | Unread |",
        "|------|------|-------|--------|---------------|--------|",
    ]
    for member in record.members:
        alive = member.is_active and (is_alive is None or bool(member.backend_ref and is_alive(member.backend_ref)))
        idle_for = _age(inbox.last_activity(team, member.name), now)
        lines.append(
            f"| {member.name} | {member.role or '-'} | {member.model or '-'} | "
            f"{member_status(member, alive, idle_for)} | {format_relative(idle_for)} | "
            f"{inbox.unread_count(team, member.name)} |"
        )

    lines += ["", "## Tasks", ""]
    lines += _task_rows(task_list) if task_list else ["_No tasks found for this team_"]

    lines += ["", "## Recent Messages", ""]
    for member in record.active_members:
        lines.append(f"#### {member.name}")
        recent = inbox.list_messages(team, member.name)[-RECENT_MESSAGES:]
        if not recent:
            lines += ["_No messages_", ""]
            continue
        lines.append("```")
        for message in recent:
            lines.append(
                f"[{message.created_at}] {message.sender} → {message.kind.value}: {_preview(message.text)}"
            )
        lines += ["```", ""]

    lines += ["## Health Checks", ""]
    lines += health_checks(team, record.members, panes)
    return "\n".join(lines) + "\n"


def health_checks(team: str, members: list[Member], panes: list | None = None) -> list[str]:
    checks = []
    if panes is not None:
        orphans = find_orphans(panes)
        if orphans:
            checks.append(f"⚠️ Found {len(orphans)} orphaned tmux pane(s)")
        else:
            checks.append("✅ No orphaned tmux panes detected")

    large = [m.name for m in members if inbox.unread_count(team, m.name) > LARGE_INBOX]
    if large:
        checks.append(f"⚠️ {len(large)} inbox(es) over {LARGE_INBOX} unread messages: {', '.join(large)}")
    else:
        checks.append(f"✅ All inboxes under {LARGE_INBOX} unread messages")

    pending = [m.name for m in members if m.state == MemberState.SHUTDOWN_REQUESTED]
    if pending:
        checks.append(f"⚠️ Awaiting shutdown response from: {', '.join(pending)}")
    else:
        checks.append("✅ No shutdown requests outstanding")

    cycles = tasks.detect_cycles(team)
    if cycles:
        checks.append(f"⚠️ {len(cycles)} circular task dependency chain(s)")
    else:
        checks.append("✅ Task graph is acyclic")
    return checks

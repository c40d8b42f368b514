"""Task formatting for CLI display: lists, dependency trees, GraphViz."""

from teamspace.lib.uuid7 import short_id
from teamspace.models import Task

STATUS_SYMBOLS = {
    "completed": "✅",
    "in_progress": "🔄",
    "pending": "⏸️",
    "cancelled": "❌",
}

STATUS_COLORS = {
    "completed": "lightgreen",
    "in_progress": "lightblue",
    "pending": "lightyellow",
    "cancelled": "lightgray",
}


def _status(task: Task) -> str:
    return getattr(task.status, "value", task.status)


def format_task_list(tasks: list[Task]) -> str:
    """One line per task with status, owner, blockers."""
    if not tasks:
        return "No tasks"

    lines = []
    for task in tasks:
        owner_str = f" @{task.owner}" if task.owner else ""
        status_str = f" ({_status(task)})" if _status(task) != "pending" else ""
        blocked_str = f" [blocked by {len(task.blocked_by)}]" if task.blocked_by else ""
        lines.append(f"[{short_id(task.task_id)}] {task.subject}{owner_str}{status_str}{blocked_str}")
    return "\n".join(lines)


def format_task_detail(task: Task) -> str:
    lines = [
        f"ID: {task.task_id}",
        f"Team: {task.team}",
        f"Status: {_status(task)}",
        f"Created: {task.created_at}",
    ]
    if task.owner:
        lines.append(f"Owner: {task.owner}")
    if task.priority:
        lines.append(f"Priority: {task.priority}")
    if task.tags:
        lines.append(f"Tags: {', '.join(task.tags)}")
    if task.blocked_by:
        lines.append(f"Blocked by: {', '.join(short_id(t) for t in task.blocked_by)}")
    if task.blocks:
        lines.append(f"Blocks: {', '.join(short_id(t) for t in task.blocks)}")
    if task.archived_at:
        lines.append(f"Archived: {task.archived_at}")
    lines.append(f"\n{task.subject}")
    if task.description:
        lines.append(task.description)
    return "\n".join(lines)


def render_tree(tasks: list[Task]) -> str:
    """Dependency tree from each root along ``blocks`` edges.

    A task blocked by several others appears under each of them.
    """
    by_id = {task.task_id: task for task in tasks}
    roots = [task for task in tasks if not task.blocked_by]
    if not roots:
        return "No root tasks found (all tasks are blocked by something)"

    lines: list[str] = []

    def walk(task: Task, indent: str, is_last: bool, path: frozenset[str]) -> None:
        symbol = STATUS_SYMBOLS.get(_status(task), "❓")
        label = f"{symbol} Task {short_id(task.task_id)}: {task.subject}"
        if not indent:
            lines.append(label)
            if task.owner:
                lines.append(f"    Owner: {task.owner} | Status: {_status(task)}")
            child_indent = "    "
        else:
            lines.append(f"{indent}{'└──' if is_last else '├──'} {label}")
            child_indent = indent + ("    " if is_last else "│   ")

        children = [by_id[t] for t in task.blocks if t in by_id and t not in path]
        for i, child in enumerate(children):
            walk(child, child_indent, i == len(children) - 1, path | {child.task_id})

    for root in roots:
        walk(root, "", True, frozenset({root.task_id}))
        lines.append("")
    return "\n".join(lines).rstrip("\n")


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def render_dot(tasks: list[Task]) -> str:
    """GraphViz digraph, nodes colored by status."""
    ids = {task.task_id for task in tasks}
    lines = [
        "digraph TaskDependencies {",
        "    rankdir=TB;",
        "    node [shape=box, style=rounded];",
        "",
    ]
    for task in tasks:
        label = f"{short_id(task.task_id)}\\n{_dot_escape(task.subject)}"
        if task.owner:
            label += f"\\n({_dot_escape(task.owner)})"
        color = STATUS_COLORS.get(_status(task), "white")
        lines.append(
            f'    "{task.task_id}" [label="{label}", fillcolor="{color}", style="filled,rounded"];'
        )
    lines.append("")
    for task in tasks:
        for blocked in task.blocks:
            if blocked in ids:
                lines.append(f'    "{task.task_id}" -> "{blocked}" [label="blocks"];')
    lines += ["", '    labelloc="t";', '    label="Task Dependency Graph";', "}"]
    return "\n".join(lines)


def format_cycles(cycles: list[list[str]], tasks: list[Task]) -> str:
    if not cycles:
        return "✅ No circular dependencies found"
    subjects = {task.task_id: task.subject for task in tasks}
    lines = ["⚠️ Circular dependencies detected:", ""]
    for cycle in cycles:
        chain = " -> ".join(f"{short_id(t)} ({subjects.get(t, '?')})" for t in [*cycle, cycle[0]])
        lines.append(f"  {chain}")
    return "\n".join(lines)

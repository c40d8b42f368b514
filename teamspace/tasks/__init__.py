"""Task primitive: team-scoped dependency graph of work items."""

from . import api, graph
from .api import (
    add_blocking_edge,
    add_task,
    archive_task,
    assign_owner,
    detect_cycles,
    find_roots,
    get_task,
    list_tasks,
    remove_blocking_edge,
    require_task,
    resolve_task_id,
    set_status,
)

__all__ = [
    "add_blocking_edge",
    "add_task",
    "api",
    "archive_task",
    "assign_owner",
    "detect_cycles",
    "find_roots",
    "get_task",
    "graph",
    "list_tasks",
    "remove_blocking_edge",
    "require_task",
    "resolve_task_id",
    "set_status",
]

"""Orphaned panes: agent panes on the tmux server that no member record owns."""

import logging

from teamspace import registry
from teamspace.errors import BackendUnavailable
from teamspace.lifecycle.backends import PaneInfo, TmuxBackend

logger = logging.getLogger(__name__)


def find_orphans(panes: list[PaneInfo], command: str | None = None) -> list[PaneInfo]:
    """Panes not referenced by any member. ``command`` limits to panes running it."""
    owned = registry.backend_refs()
    return [
        pane
        for pane in panes
        if pane.pane_id not in owned and (command is None or pane.command == command)
    ]


def kill_orphans(orphans: list[PaneInfo], backend: TmuxBackend) -> dict[str, bool]:
    results = {}
    for pane in orphans:
        try:
            backend.terminate(pane.pane_id)
            results[pane.pane_id] = True
        except BackendUnavailable as e:
            logger.error(f"Failed to kill pane {pane.pane_id}: {e}")
            results[pane.pane_id] = False
    return results


def format_age(start_time: int, now: float) -> str:
    if not start_time:
        return "-"
    age = max(0, int(now) - start_time)
    return f"{age // 3600}h {(age % 3600) // 60}m"

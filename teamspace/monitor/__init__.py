"""Monitoring: team dashboard and orphaned pane detection."""

from . import dashboard, orphans

__all__ = ["dashboard", "orphans"]

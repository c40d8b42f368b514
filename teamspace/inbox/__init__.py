"""Inbox primitive: append-only message queues per team member."""

from . import api
from .api import (
    UnreadMessages,
    append,
    broadcast,
    last_activity,
    list_messages,
    list_unread,
    mark_read,
    read_all,
    unread_count,
)

__all__ = [
    "UnreadMessages",
    "api",
    "append",
    "broadcast",
    "last_activity",
    "list_messages",
    "list_unread",
    "mark_read",
    "read_all",
    "unread_count",
]

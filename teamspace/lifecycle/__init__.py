"""Lifecycle: spawning members, the shutdown handshake, and team teardown."""

from .backends import LaunchSpec, PaneInfo, ProcessManager, SubprocessBackend, TmuxBackend
from .coordinator import Coordinator, MemberHandle, MemberSpec
from .member import MemberAgent, approve_always
from .poller import PollSchedule, StoreWatcher, wait_for

__all__ = [
    "Coordinator",
    "LaunchSpec",
    "MemberAgent",
    "MemberHandle",
    "MemberSpec",
    "PaneInfo",
    "PollSchedule",
    "ProcessManager",
    "StoreWatcher",
    "SubprocessBackend",
    "TmuxBackend",
    "approve_always",
    "wait_for",
]

"""Member side of the protocol: read the inbox, answer the lead."""

import logging
import threading
from collections.abc import Callable

from teamspace import config, inbox
from teamspace.config import Settings
from teamspace.lib.uuid7 import uuid7
from teamspace.models import (
    IdleNotification,
    Message,
    PlanApprovalRequest,
    ShutdownRequest,
    ShutdownResponse,
)

from .poller import PollSchedule, StoreWatcher

logger = logging.getLogger(__name__)

ShutdownDecision = Callable[[ShutdownRequest], tuple[bool, str | None]]


def approve_always(request: ShutdownRequest) -> tuple[bool, str | None]:
    return True, None


class MemberAgent:
    """Cooperative poller for one member.

    ``decide`` answers shutdown requests; ``on_message`` sees everything else.
    After approving a shutdown the agent stops polling.
    """

    def __init__(
        self,
        team: str,
        name: str,
        decide: ShutdownDecision = approve_always,
        on_message: Callable[[Message], None] | None = None,
        settings: Settings | None = None,
        schedule: PollSchedule | None = None,
    ):
        self.team = team
        self.name = name
        self.decide = decide
        self.on_message = on_message
        self.settings = settings or config.settings()
        self.schedule = schedule or PollSchedule.from_settings(self.settings)
        self.stopped = False

    @property
    def lead(self) -> str:
        return self.settings.lead_name

    def _send_lead(self, text: str, summary: str, payload) -> Message:
        return inbox.append(self.team, self.lead, self.name, text, summary=summary, payload=payload)

    def respond_to_shutdown(self, request_id: str, approve: bool, reason: str | None = None) -> Message:
        verdict = "approved" if approve else "denied"
        return self._send_lead(
            f"{self.name} {verdict} shutdown" + (f": {reason}" if reason else ""),
            f"shutdown {verdict}",
            ShutdownResponse(request_id=request_id, approve=approve, reason=reason),
        )

    def notify_idle(self, reason: str = "available", completed_task_id: str | None = None) -> Message:
        return self._send_lead(
            f"{self.name} is idle ({reason})",
            "idle",
            IdleNotification(reason=reason, completed_task_id=completed_task_id),
        )

    def request_plan_approval(self, plan: str) -> str:
        request_id = uuid7()
        self._send_lead(plan, "plan approval", PlanApprovalRequest(request_id=request_id, plan=plan))
        return request_id

    def poll_once(self) -> list[Message]:
        """Handle everything unread, marking each message read once handled.

        If ``decide`` or ``on_message`` raises, that message and the ones after it
        stay unread for the next poll.
        """
        handled = []
        for message in inbox.list_unread(self.team, self.name):
            self._handle(message)
            inbox.mark_read(self.team, self.name, [message.message_id])
            handled.append(message)
        return handled

    def _handle(self, message: Message) -> None:
        if isinstance(message.payload, ShutdownRequest):
            if self.stopped:
                return
            approve, reason = self.decide(message.payload)
            self.respond_to_shutdown(message.payload.request_id, approve, reason)
            if approve:
                logger.info(f"{self.name}@{self.team} approved shutdown")
                self.stopped = True
        elif self.on_message is not None:
            self.on_message(message)

    def run(self, stop: threading.Event, watch: bool = False) -> None:
        """Poll until ``stop`` is set or a shutdown was approved."""
        watcher = StoreWatcher().start() if watch else None
        try:
            while not stop.is_set() and not self.stopped:
                if self.poll_once():
                    self.schedule.reset()
                    continue
                delay = self.schedule.next_delay()
                if watcher is None:
                    stop.wait(delay)
                elif watcher.wait(delay):
                    self.schedule.reset()
        finally:
            if watcher is not None:
                watcher.stop()

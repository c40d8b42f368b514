"""Lifecycle coordinator: spawn members, run the shutdown handshake, tear teams down.

The coordinator is the team lead's side of the protocol. It never holds a team
transaction across a call into the process manager: registry writes happen
before and after each backend call, each in its own transaction.
"""

import logging
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from teamspace import config, events, inbox, registry, tasks
from teamspace.config import Settings
from teamspace.errors import (
    BackendUnavailable,
    RecipientInactive,
    ShutdownTimeout,
    SpawnFailed,
    TeamspaceError,
)
from teamspace.events import EventSource
from teamspace.lib import store
from teamspace.models import (
    IdleNotification,
    Member,
    MemberState,
    Message,
    ShutdownRecord,
    ShutdownRequest,
    ShutdownResponse,
    ShutdownStatus,
    TaskStatus,
)

from . import requests
from .backends import LaunchSpec, ProcessManager
from .poller import PollSchedule, wait_for

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LIVENESS_SCHEDULE = (0.1, 1.5, 1.0)


@dataclass
class MemberSpec:
    """What to spawn. ``command`` overrides the configured member_command."""

    name: str
    role: str | None = None
    model: str | None = None
    prompt: str = ""
    command: list[str] | None = None
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    color: str | None = None


@dataclass
class MemberHandle:
    team: str
    name: str
    agent_id: str
    backend_ref: str
    color: str | None = None
    state: MemberState = MemberState.ACTIVE

    @classmethod
    def from_member(cls, member: Member) -> "MemberHandle":
        return cls(
            team=member.team,
            name=member.name,
            agent_id=member.agent_id,
            backend_ref=member.backend_ref or "",
            color=member.color,
            state=member.state,
        )


class Coordinator:
    def __init__(
        self,
        backend: ProcessManager,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.settings = settings or config.settings()
        self.sleep = sleep
        self.clock = clock

    @property
    def lead(self) -> str:
        return self.settings.lead_name

    def _schedule(self) -> PollSchedule:
        return PollSchedule.from_settings(self.settings)

    def _with_retries(self, action: str, fn: Callable[[], T], team: str, member: str) -> T:
        attempts = max(1, self.settings.retry_attempts)
        for attempt in range(attempts):
            try:
                return fn()
            except BackendUnavailable as e:
                if attempt == attempts - 1:
                    logger.error(f"{action} {member}@{team} failed after {attempts} attempts: {e}")
                    raise
                delay = self.settings.retry_backoff * (attempt + 1)
                logger.warning(
                    f"{action} {member}@{team} failed (attempt {attempt + 1}/{attempts}), retrying in {delay}s: {e}"
                )
                self.sleep(delay)
        raise AssertionError("unreachable")

    # Spawn

    def _launch_spec(self, member: Member, spec: MemberSpec) -> LaunchSpec:
        if spec.command:
            command = list(spec.command)
        else:
            command = shlex.split(
                self.settings.member_command.format(
                    name=member.name, team=member.team, model=member.model or "default"
                )
            )
        env = {
            "TEAMSPACE_TEAM": member.team,
            "TEAMSPACE_MEMBER": member.name,
            "TEAMSPACE_AGENT_ID": member.agent_id,
            **spec.env,
        }
        return LaunchSpec(
            team=member.team,
            name=member.name,
            agent_id=member.agent_id,
            command=command,
            cwd=spec.cwd,
            env=env,
        )

    def _is_alive(self, ref: str) -> bool:
        try:
            return self.backend.is_alive(ref)
        except BackendUnavailable as e:
            logger.warning(f"Liveness check for {ref} failed: {e}")
            return False

    def _rollback_spawn(self, team: str, name: str, ref: str | None) -> None:
        if ref is not None:
            try:
                self._with_retries("terminate", lambda: self.backend.terminate(ref), team, name)
            except BackendUnavailable as e:
                logger.error(f"Could not clean up backend {ref} for {name}@{team}: {e}")
        registry.set_member_state(team, name, MemberState.SPAWN_FAILED)
        registry.remove_member(team, name)

    def spawn_member(self, team: str, spec: MemberSpec) -> MemberHandle:
        """Start a member and wait for its backend to report liveness.

        Either the member ends up active with a backend reference, or nothing of
        it remains: the backend is torn down, the registry row removed, and
        SpawnFailed raised.
        """
        team_record = registry.require_team(team)
        timeout = team_record.settings.timeout or self.settings.spawn_timeout
        member = registry.add_member(
            team,
            Member(
                team=team,
                name=spec.name,
                role=spec.role,
                model=spec.model or team_record.settings.default_model,
                color=spec.color,
            ),
        )

        ref = None
        try:
            registry.set_member_state(team, spec.name, MemberState.SPAWNING, expect=MemberState.REQUESTED)
            launch = self._launch_spec(member, spec)
            ref = self._with_retries("spawn", lambda: self.backend.spawn(launch), team, spec.name)
            alive = wait_for(
                lambda: self._is_alive(ref),
                timeout,
                PollSchedule(*_LIVENESS_SCHEDULE),
                sleep=self.sleep,
                clock=self.clock,
            )
            if not alive:
                raise SpawnFailed(
                    f"{member.agent_id} did not report liveness within {timeout}s",
                    team=team,
                    member=spec.name,
                )
            member = registry.activate_member(team, spec.name, ref)
        except Exception as e:
            logger.error(f"Spawn of {member.agent_id} failed, rolling back: {e}")
            self._rollback_spawn(team, spec.name, ref)
            events.emit(EventSource.LIFECYCLE, "spawn.failed", team=team, agent_id=member.agent_id, data=str(e))
            if isinstance(e, SpawnFailed):
                raise
            raise SpawnFailed(f"Spawn of {member.agent_id} failed: {e}", team=team, member=spec.name) from e

        events.emit(EventSource.LIFECYCLE, "spawn", team=team, agent_id=member.agent_id, data=ref)
        logger.info(f"Spawned {member.agent_id} on {ref}")

        if spec.prompt:
            inbox.append(team, spec.name, self.lead, spec.prompt, summary="initial prompt")
        return MemberHandle.from_member(member)

    # Messaging

    def send_message(
        self,
        team: str,
        sender: str,
        recipient: str,
        text: str,
        summary: str = "",
    ) -> Message:
        """Direct message. Recipients that are not members (the lead) always receive."""
        with store.transaction(team):
            target = registry.get_member(team, recipient)
            if target is not None and not target.is_active:
                raise RecipientInactive(
                    f"{target.agent_id} is {target.state.value} and no longer receives messages",
                    team=team,
                    member=recipient,
                )
            origin = registry.get_member(team, sender)
            return inbox.append(
                team, recipient, sender, text, summary=summary, color=origin.color if origin else None
            )

    def broadcast(self, team: str, text: str, summary: str = "", sender: str | None = None) -> list[str]:
        return inbox.broadcast(team, text, summary=summary, sender=sender or self.lead)

    # Shutdown handshake

    def request_shutdown(self, team: str, member: str, reason: str = "") -> str:
        """Ask an active member to stop. Returns the request id to correlate the response."""
        with store.transaction(team):
            registry.set_member_state(team, member, MemberState.SHUTDOWN_REQUESTED, expect=MemberState.ACTIVE)
            record = requests.create(team, member, reason)
            self._send_request(record)
            events.emit(
                EventSource.LIFECYCLE, "shutdown.request", team=team, agent_id=f"{member}@{team}", data=record.request_id
            )
        logger.info(f"Requested shutdown of {member}@{team} ({record.request_id})")
        return record.request_id

    def _send_request(self, record: ShutdownRecord) -> None:
        inbox.append(
            record.team,
            record.member,
            self.lead,
            record.reason or "Shutdown requested",
            summary="shutdown request",
            payload=ShutdownRequest(request_id=record.request_id, reason=record.reason),
        )

    def handle_shutdown_response(self, request_id: str, approve: bool, reason: str | None = None) -> Member:
        """Apply a member's answer. Approval ends with the member terminated.

        If the backend cannot be stopped the member stays shutdown_approved and
        ShutdownTimeout is raised.
        """
        record = requests.require(request_id)
        team, name = record.team, record.member
        status = ShutdownStatus.APPROVED if approve else ShutdownStatus.DENIED

        with store.transaction(team):
            requests.resolve(record, status, reason)
            target = MemberState.SHUTDOWN_APPROVED if approve else MemberState.ACTIVE
            member = registry.set_member_state(team, name, target, expect=MemberState.SHUTDOWN_REQUESTED)
            events.emit(
                EventSource.LIFECYCLE, f"shutdown.{status.value}", team=team, agent_id=member.agent_id, data=reason
            )

        if not approve:
            logger.info(f"{member.agent_id} denied shutdown: {reason or 'no reason given'}")
            return member
        return self._finish_shutdown(member)

    def _finish_shutdown(self, member: Member) -> Member:
        if member.backend_ref:
            try:
                self._with_retries(
                    "terminate",
                    lambda: self.backend.terminate(member.backend_ref),
                    member.team,
                    member.name,
                )
            except BackendUnavailable as e:
                raise ShutdownTimeout(
                    f"Could not terminate {member.agent_id}: {e}",
                    team=member.team,
                    members=[member.name],
                    member=member.name,
                ) from e
        return registry.deactivate_member(member.team, member.name)

    def await_shutdown_response(self, team: str, request_id: str, timeout: float) -> ShutdownResponse | None:
        """Wait for the response to one request. Only that message is consumed."""

        def find() -> ShutdownResponse | None:
            for message in inbox.list_unread(team, self.lead):
                payload = message.payload
                if isinstance(payload, ShutdownResponse) and payload.request_id == request_id:
                    inbox.mark_read(team, self.lead, [message.message_id])
                    return payload
            return None

        return wait_for(find, timeout, self._schedule(), sleep=self.sleep, clock=self.clock)

    def _drive_shutdown(self, team: str, member: Member) -> bool:
        """Run the handshake for one member to completion. False if it never finished."""
        name = member.name
        if member.state == MemberState.SHUTDOWN_APPROVED:
            try:
                self._finish_shutdown(member)
            except ShutdownTimeout:
                return False
            return True

        pending = requests.pending_for(team, name) if member.state == MemberState.SHUTDOWN_REQUESTED else None
        if pending is not None:
            record = pending
        else:
            record = requests.require(self.request_shutdown(team, name, reason="team is being deleted"))

        resend = False
        for attempt in range(max(1, self.settings.shutdown_attempts)):
            if resend:
                logger.warning(f"No shutdown response from {name}@{team}, resending (attempt {attempt + 1})")
                self._send_request(record)
            response = self.await_shutdown_response(team, record.request_id, self.settings.shutdown_wait)
            if response is None:
                resend = True
                continue
            resend = False
            try:
                updated = self.handle_shutdown_response(record.request_id, response.approve, response.reason)
            except ShutdownTimeout:
                return False
            if updated.state == MemberState.TERMINATED:
                return True
            record = requests.require(self.request_shutdown(team, name, reason="team is being deleted"))
        return False

    def delete_team(self, team: str) -> None:
        """Shut every active member down through the handshake, then delete the team."""
        team_record = registry.require_team(team)
        stuck = [m.name for m in team_record.active_members if not self._drive_shutdown(team, m)]
        if stuck:
            events.emit(EventSource.LIFECYCLE, "shutdown.timeout", team=team, data=",".join(stuck))
            raise ShutdownTimeout(
                f"Team '{team}' still has members that did not shut down: {', '.join(stuck)}",
                team=team,
                members=stuck,
            )
        registry.delete_team(team)

    # Lead inbox

    def pump(self, team: str) -> list[Message]:
        """Drain the lead's inbox and act on protocol messages. Returns every message handled.

        Each message is marked read once it has been applied. One that no longer
        applies (stale response, unknown task) is logged and skipped. Members whose
        backend could not be stopped are reported with ShutdownTimeout after the
        rest of the inbox has been handled.
        """
        handled = []
        stuck: list[str] = []
        for message in inbox.list_unread(team, self.lead):
            try:
                self._dispatch(team, message)
            except ShutdownTimeout as e:
                stuck.extend(e.members)
            except TeamspaceError as e:
                logger.warning(f"Skipping {message.kind.value} from {message.sender}: {e}")
            inbox.mark_read(team, self.lead, [message.message_id])
            handled.append(message)
        if stuck:
            raise ShutdownTimeout(
                f"Approved members of '{team}' could not be terminated: {', '.join(stuck)}",
                team=team,
                members=stuck,
            )
        return handled

    def _dispatch(self, team: str, message: Message) -> None:
        payload = message.payload
        if isinstance(payload, ShutdownResponse):
            self.handle_shutdown_response(payload.request_id, payload.approve, payload.reason)
        elif isinstance(payload, IdleNotification) and payload.completed_task_id:
            tasks.set_status(team, payload.completed_task_id, TaskStatus.COMPLETED.value)

    def cleanup_session(self, session_id: str) -> list[str]:
        """Tear down every team led by a session that ended. Backends are stopped best effort."""
        deleted = []
        for team in registry.teams_for_session(session_id):
            for member in team.active_members:
                if member.backend_ref:
                    try:
                        self._with_retries(
                            "terminate",
                            lambda ref=member.backend_ref: self.backend.terminate(ref),
                            team.name,
                            member.name,
                        )
                    except BackendUnavailable as e:
                        logger.error(f"Leaving {member.backend_ref} for {member.agent_id} running: {e}")
                registry.deactivate_member(team.name, member.name)
            registry.delete_team(team.name)
            deleted.append(team.name)
        if deleted:
            logger.info(f"Session {session_id} ended, removed teams: {', '.join(deleted)}")
        return deleted

"""Lifecycle coordinator: spawn rollback, shutdown handshake, team teardown."""

import pytest

from teamspace import events, inbox, registry, tasks
from teamspace.errors import (
    ActiveMembersExist,
    DuplicateMemberName,
    InvalidTransition,
    RecipientInactive,
    ShutdownTimeout,
    SpawnFailed,
)
from teamspace.lifecycle import requests
from teamspace.lifecycle.coordinator import MemberSpec
from teamspace.lifecycle.member import MemberAgent
from teamspace.models import MemberState, ShutdownRequest, ShutdownStatus, TeamSettings


@pytest.fixture
def team(coordinator):
    registry.create_team("alpha", lead_session_id="s-1")
    return "alpha"


def _agents(team, settings, *names, decide=None):
    kwargs = {"decide": decide} if decide else {}
    return [MemberAgent(team, name, settings=settings, **kwargs) for name in names]


def test_spawn_member_activates(coordinator, backend, team):
    """Contract: a live backend ends with an active member holding its ref."""
    handle = coordinator.spawn_member(team, MemberSpec(name="researcher", role="research"))

    assert handle.backend_ref == "%1"
    assert handle.agent_id == "researcher@alpha"
    member = registry.require_member(team, "researcher")
    assert member.is_active
    assert member.state == MemberState.ACTIVE
    assert member.role == "research"


def test_spawn_builds_command_and_env(coordinator, backend, test_space):
    registry.create_team("alpha", settings=TeamSettings(default_model="sonnet"))
    coordinator.spawn_member("alpha", MemberSpec(name="researcher", env={"EXTRA": "1"}))

    [launch] = backend.spawned
    assert launch.command == ["claude", "--agent-id", "researcher@alpha", "--model", "sonnet"]
    assert launch.env["TEAMSPACE_AGENT_ID"] == "researcher@alpha"
    assert launch.env["EXTRA"] == "1"


def test_spawn_delivers_prompt(coordinator, team):
    coordinator.spawn_member(team, MemberSpec(name="researcher", prompt="Survey the codebase"))

    [message] = inbox.list_messages(team, "researcher")
    assert message.text == "Survey the codebase"
    assert message.sender == coordinator.lead


def test_spawn_retries_transient_failures(coordinator, backend, clock, team):
    """Contract: BackendUnavailable is retried with linear backoff."""
    backend.fail_spawn = 2
    coordinator.spawn_member(team, MemberSpec(name="researcher"))

    assert clock.sleeps == [pytest.approx(0.1), pytest.approx(0.2)]
    assert registry.require_member(team, "researcher").is_active


def test_spawn_exhausted_retries_rolls_back(coordinator, backend, team):
    """Boundary: when the backend never comes up no member record remains."""
    backend.fail_spawn = 10

    with pytest.raises(SpawnFailed) as exc:
        coordinator.spawn_member(team, MemberSpec(name="researcher"))

    assert exc.value.member == "researcher"
    assert registry.get_member(team, "researcher") is None
    assert "spawn.failed" in [e.event_type for e in events.query(team=team)]


def test_spawn_liveness_timeout_rolls_back(coordinator, backend, clock, team):
    """Boundary: a backend that never reports alive is torn down and forgotten."""
    backend.never_alive = True

    with pytest.raises(SpawnFailed):
        coordinator.spawn_member(team, MemberSpec(name="researcher"))

    assert backend.terminated == ["%1"]
    assert registry.get_member(team, "researcher") is None
    assert clock.now == pytest.approx(3.0)


def test_spawn_uses_team_timeout(coordinator, backend, clock, test_space):
    registry.create_team("alpha", settings=TeamSettings(timeout=0.5))
    backend.never_alive = True

    with pytest.raises(SpawnFailed):
        coordinator.spawn_member("alpha", MemberSpec(name="researcher"))
    assert clock.now == pytest.approx(0.5)


def test_spawn_duplicate_name_is_validation_error(coordinator, backend, team):
    """Boundary: a taken name fails before the backend is touched."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))

    with pytest.raises(DuplicateMemberName):
        coordinator.spawn_member(team, MemberSpec(name="researcher"))
    assert len(backend.spawned) == 1
    assert registry.require_member(team, "researcher").is_active


def test_request_shutdown_sends_request(coordinator, team):
    """Contract: request_shutdown moves the member and queues a ShutdownRequest."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher", reason="done")

    assert registry.require_member(team, "researcher").state == MemberState.SHUTDOWN_REQUESTED
    [message] = inbox.list_unread(team, "researcher")
    assert message.payload == ShutdownRequest(request_id=request_id, reason="done")
    assert requests.require(request_id).status == ShutdownStatus.PENDING


def test_request_shutdown_requires_active(coordinator, team):
    """Boundary: only active members can be asked to shut down."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    coordinator.request_shutdown(team, "researcher")

    with pytest.raises(InvalidTransition):
        coordinator.request_shutdown(team, "researcher")
    assert inbox.unread_count(team, "researcher") == 1


def test_approved_shutdown_terminates(coordinator, backend, team):
    """Contract: approval ends with the backend gone and the member inactive."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")

    member = coordinator.handle_shutdown_response(request_id, approve=True)

    assert member.state == MemberState.TERMINATED
    assert not registry.require_member(team, "researcher").is_active
    assert backend.terminated == ["%1"]
    assert requests.require(request_id).status == ShutdownStatus.APPROVED


def test_denied_shutdown_returns_to_active(coordinator, backend, team):
    """Contract: denial leaves the member active and its backend running."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")

    member = coordinator.handle_shutdown_response(request_id, approve=False, reason="mid-task")

    assert member.state == MemberState.ACTIVE
    assert backend.terminated == []
    record = requests.require(request_id)
    assert record.status == ShutdownStatus.DENIED
    assert record.response_reason == "mid-task"


def test_denied_shutdown_blocks_team_deletion(coordinator, team):
    """Contract: after a denial the member is active, so the team cannot be deleted."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")
    coordinator.handle_shutdown_response(request_id, approve=False)

    with pytest.raises(ActiveMembersExist):
        registry.delete_team(team)
    assert registry.get_team(team) is not None


def test_spawned_member_reads_message_once(coordinator, test_space):
    """Contract: a message sent to a spawned member is unread exactly once."""
    registry.create_team("t1")
    coordinator.spawn_member("t1", MemberSpec(name="m1"))
    coordinator.send_message("t1", coordinator.lead, "m1", "hello")

    unread = list(inbox.list_unread("t1", "m1"))
    assert [m.text for m in unread] == ["hello"]

    inbox.mark_read("t1", "m1", [unread[0].message_id])
    assert list(inbox.list_unread("t1", "m1")) == []


def test_response_applies_once(coordinator, team):
    """Boundary: a second answer to the same request is rejected."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")
    coordinator.handle_shutdown_response(request_id, approve=False)

    with pytest.raises(InvalidTransition):
        coordinator.handle_shutdown_response(request_id, approve=True)
    assert registry.require_member(team, "researcher").state == MemberState.ACTIVE


def test_terminate_failure_raises_timeout(coordinator, backend, team):
    """Boundary: an unkillable backend leaves the member shutdown_approved, never silently."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")
    backend.fail_terminate = 10

    with pytest.raises(ShutdownTimeout) as exc:
        coordinator.handle_shutdown_response(request_id, approve=True)

    assert exc.value.members == ["researcher"]
    member = registry.require_member(team, "researcher")
    assert member.state == MemberState.SHUTDOWN_APPROVED
    assert member.is_active


def test_delete_team_runs_handshake(coordinator, clock, lifecycle_settings, team):
    """Contract: delete_team shuts every member down, then removes the team."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    coordinator.spawn_member(team, MemberSpec(name="tester"))
    agents = _agents(team, lifecycle_settings, "researcher", "tester")
    clock.on_sleep = lambda: [agent.poll_once() for agent in agents]

    coordinator.delete_team(team)

    assert registry.get_team(team) is None
    assert all(agent.stopped for agent in agents)


def test_delete_team_unresponsive_member(coordinator, backend, clock, lifecycle_settings, team):
    """Boundary: after the retry budget ShutdownTimeout names the stuck member and the team stays."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))

    with pytest.raises(ShutdownTimeout) as exc:
        coordinator.delete_team(team)

    assert exc.value.members == ["researcher"]
    assert registry.require_team(team) is not None
    assert registry.require_member(team, "researcher").state == MemberState.SHUTDOWN_REQUESTED
    resent = list(inbox.list_unread(team, "researcher"))
    assert len(resent) == lifecycle_settings.shutdown_attempts
    assert len({m.payload.request_id for m in resent}) == 1
    assert clock.now == pytest.approx(lifecycle_settings.shutdown_wait * lifecycle_settings.shutdown_attempts)
    assert backend.terminated == []


def test_delete_team_after_denial(coordinator, clock, lifecycle_settings, team):
    """Contract: a denial is answered with a fresh request within the same budget."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    answers = iter([(False, "finishing up"), (True, None)])
    agents = _agents(team, lifecycle_settings, "researcher", decide=lambda request: next(answers))
    clock.on_sleep = lambda: [agent.poll_once() for agent in agents]

    coordinator.delete_team(team)

    assert registry.get_team(team) is None


def test_delete_team_resumes_pending_request(coordinator, clock, lifecycle_settings, team):
    """Contract: a member already asked to stop is waited on, not asked again."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")
    agents = _agents(team, lifecycle_settings, "researcher")
    clock.on_sleep = lambda: [agent.poll_once() for agent in agents]

    coordinator.delete_team(team)

    assert requests.get(request_id) is None
    assert registry.get_team(team) is None


def test_delete_team_without_members(coordinator, team):
    coordinator.delete_team(team)
    assert registry.get_team(team) is None


def test_send_message_to_inactive_member_raises(coordinator, team):
    """Boundary: deactivated members no longer receive messages."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")
    coordinator.handle_shutdown_response(request_id, approve=True)

    with pytest.raises(RecipientInactive):
        coordinator.send_message(team, coordinator.lead, "researcher", "still there?")


def test_send_message_to_lead_and_members(coordinator, team):
    """Contract: the lead's queue needs no member record; sender color is stamped."""
    handle = coordinator.spawn_member(team, MemberSpec(name="researcher"))

    message = coordinator.send_message(team, "researcher", coordinator.lead, "found it")
    assert message.color == handle.color
    coordinator.send_message(team, coordinator.lead, "researcher", "thanks")
    assert inbox.unread_count(team, "researcher") == 1


def test_broadcast_from_lead(coordinator, team):
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    coordinator.spawn_member(team, MemberSpec(name="tester"))

    assert coordinator.broadcast(team, "standup") == ["researcher", "tester"]


def test_pump_applies_protocol_messages(coordinator, lifecycle_settings, team):
    """Contract: pump completes reported tasks and applies shutdown answers."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    task_id = tasks.add_task(team, "Survey", owner="researcher")
    tasks.set_status(team, task_id, "in_progress")
    [agent] = _agents(team, lifecycle_settings, "researcher")

    agent.notify_idle(completed_task_id=task_id)
    coordinator.request_shutdown(team, "researcher")
    agent.poll_once()

    messages = coordinator.pump(team)

    assert [m.kind.value for m in messages] == ["idle_notification", "shutdown_response"]
    assert tasks.require_task(team, task_id).status.value == "completed"
    assert registry.require_member(team, "researcher").state == MemberState.TERMINATED
    assert coordinator.pump(team) == []


def test_pump_skips_stale_answers(coordinator, lifecycle_settings, team):
    """Boundary: an answer to an already-resolved request is logged and skipped."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    request_id = coordinator.request_shutdown(team, "researcher")
    [agent] = _agents(team, lifecycle_settings, "researcher")
    agent.respond_to_shutdown(request_id, approve=False)
    agent.respond_to_shutdown(request_id, approve=True)

    coordinator.pump(team)

    assert registry.require_member(team, "researcher").state == MemberState.ACTIVE


def test_pump_continues_past_unknown_task(coordinator, lifecycle_settings, team):
    """Boundary: a bad idle report does not swallow the shutdown answer queued behind it."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    [agent] = _agents(team, lifecycle_settings, "researcher")
    agent.notify_idle(completed_task_id="no-such-task")
    coordinator.request_shutdown(team, "researcher")
    agent.poll_once()

    messages = coordinator.pump(team)

    assert [m.kind.value for m in messages] == ["idle_notification", "shutdown_response"]
    assert registry.require_member(team, "researcher").state == MemberState.TERMINATED
    assert inbox.unread_count(team, coordinator.lead) == 0


def test_pump_reports_unkillable_member_after_draining(coordinator, backend, lifecycle_settings, team):
    """Boundary: a failed terminate surfaces as ShutdownTimeout once the inbox is handled."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    [agent] = _agents(team, lifecycle_settings, "researcher")
    coordinator.request_shutdown(team, "researcher")
    agent.poll_once()
    agent.notify_idle()
    backend.fail_terminate = 10

    with pytest.raises(ShutdownTimeout) as exc:
        coordinator.pump(team)

    assert exc.value.members == ["researcher"]
    assert inbox.unread_count(team, coordinator.lead) == 0
    assert registry.require_member(team, "researcher").state == MemberState.SHUTDOWN_APPROVED


def test_cleanup_session_removes_led_teams(coordinator, backend, test_space, team):
    """Contract: session end terminates members and deletes only that session's teams."""
    registry.create_team("beta", lead_session_id="s-2")
    coordinator.spawn_member(team, MemberSpec(name="researcher"))

    assert coordinator.cleanup_session("s-1") == ["alpha"]
    assert registry.get_team("alpha") is None
    assert registry.get_team("beta") is not None
    assert backend.terminated == ["%1"]


def test_cleanup_session_is_best_effort(coordinator, backend, team):
    """Boundary: a backend that cannot be killed does not block the cleanup."""
    coordinator.spawn_member(team, MemberSpec(name="researcher"))
    backend.fail_terminate = 10

    assert coordinator.cleanup_session("s-1") == ["alpha"]
    assert registry.get_team(team) is None

"""Member agent: answering the lead from the member's side."""

import threading

import pytest

from teamspace import inbox, registry
from teamspace.lifecycle.member import MemberAgent
from teamspace.models import (
    IdleNotification,
    PlanApprovalRequest,
    ShutdownRequest,
    ShutdownResponse,
)


@pytest.fixture
def team(test_space):
    registry.create_team("alpha")
    return "alpha"


def _lead_payloads(team):
    return [m.payload for m in inbox.list_messages(team, "team-lead")]


def test_poll_once_approves_shutdown(team):
    """Contract: an approved request is answered, marked read, and stops the agent."""
    inbox.append(team, "researcher", "team-lead", "stop", payload=ShutdownRequest("req-1"))
    agent = MemberAgent(team, "researcher")

    handled = agent.poll_once()

    assert len(handled) == 1
    assert agent.stopped
    assert _lead_payloads(team) == [ShutdownResponse("req-1", approve=True, reason=None)]
    assert inbox.unread_count(team, "researcher") == 0


def test_poll_once_denies_with_reason(team):
    inbox.append(team, "researcher", "team-lead", "stop", payload=ShutdownRequest("req-1"))
    agent = MemberAgent(team, "researcher", decide=lambda request: (False, "mid-task"))

    agent.poll_once()

    assert not agent.stopped
    assert _lead_payloads(team) == [ShutdownResponse("req-1", approve=False, reason="mid-task")]


def test_poll_once_answers_duplicate_request_once(team):
    """Boundary: a resent request after approval is not answered again."""
    for _ in range(2):
        inbox.append(team, "researcher", "team-lead", "stop", payload=ShutdownRequest("req-1"))
    agent = MemberAgent(team, "researcher")

    agent.poll_once()

    assert len(_lead_payloads(team)) == 1


def test_poll_once_hands_other_messages_over(team):
    seen = []
    inbox.append(team, "researcher", "team-lead", "look at parser.py")
    agent = MemberAgent(team, "researcher", on_message=seen.append)

    agent.poll_once()

    assert [m.text for m in seen] == ["look at parser.py"]
    assert _lead_payloads(team) == []


def test_poll_once_keeps_unhandled_messages_unread(team):
    """Boundary: a failing handler leaves its message and the rest for the next poll."""
    for text in ("first", "second", "third"):
        inbox.append(team, "researcher", "team-lead", text)
    failing = {"second"}
    seen = []

    def on_message(message):
        if message.text in failing:
            raise RuntimeError("handler crashed")
        seen.append(message.text)

    agent = MemberAgent(team, "researcher", on_message=on_message)

    with pytest.raises(RuntimeError):
        agent.poll_once()
    assert [m.text for m in inbox.list_unread(team, "researcher")] == ["second", "third"]

    failing.clear()
    agent.poll_once()
    assert seen == ["first", "second", "third"]
    assert inbox.unread_count(team, "researcher") == 0


def test_notify_idle(team):
    agent = MemberAgent(team, "researcher")
    agent.notify_idle(completed_task_id="t-1")

    assert _lead_payloads(team) == [IdleNotification(reason="available", completed_task_id="t-1")]


def test_request_plan_approval(team):
    agent = MemberAgent(team, "researcher")
    request_id = agent.request_plan_approval("1. read 2. write")

    [payload] = _lead_payloads(team)
    assert payload == PlanApprovalRequest(request_id=request_id, plan="1. read 2. write")


def test_run_exits_after_approval(team):
    """Contract: run returns once a shutdown has been approved."""
    inbox.append(team, "researcher", "team-lead", "stop", payload=ShutdownRequest("req-1"))
    agent = MemberAgent(team, "researcher")

    agent.run(threading.Event())

    assert agent.stopped


def test_run_exits_when_stopped(team):
    stop = threading.Event()
    stop.set()
    agent = MemberAgent(team, "researcher")

    agent.run(stop)

    assert not agent.stopped


def test_run_backs_off_when_idle(team, lifecycle_settings):
    """Contract: idle polls stretch the delay until the cap."""
    stop = threading.Event()
    delays = []
    agent = MemberAgent(team, "researcher", settings=lifecycle_settings)

    def fake_wait(timeout):
        delays.append(timeout)
        if len(delays) == 4:
            stop.set()
        return stop.is_set()

    stop.wait = fake_wait
    agent.run(stop)

    assert delays == [0.5, 1.0, 2.0, 2.0]

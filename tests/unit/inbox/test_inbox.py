"""Message store: ordering, read tracking, and lazy unread views."""

import threading

import pytest

from teamspace import inbox, registry
from teamspace.errors import TeamNotFound
from teamspace.models import Broadcast, Member, MemberState, ShutdownRequest


@pytest.fixture
def team(test_space):
    registry.create_team("alpha")
    return "alpha"


def _live_member(team, name):
    registry.add_member(team, Member(team=team, name=name))
    registry.set_member_state(team, name, MemberState.SPAWNING)
    registry.activate_member(team, name, f"%{name}")


def test_append_creates_queue_lazily(team):
    """Contract: appending to an unknown recipient creates its queue."""
    inbox.append(team, "researcher", "team-lead", "hello")

    messages = inbox.list_messages(team, "researcher")
    assert [m.text for m in messages] == ["hello"]
    assert messages[0].sender == "team-lead"
    assert not messages[0].read


def test_append_unknown_team_raises(test_space):
    with pytest.raises(TeamNotFound):
        inbox.append("ghost", "researcher", "team-lead", "hello")


def test_append_preserves_order(team):
    """Contract: messages read back in append order."""
    for i in range(5):
        inbox.append(team, "researcher", "team-lead", f"m{i}")

    assert [m.text for m in inbox.list_unread(team, "researcher")] == [f"m{i}" for i in range(5)]


def test_queues_are_independent(team):
    inbox.append(team, "researcher", "team-lead", "for researcher")
    inbox.append(team, "tester", "team-lead", "for tester")

    assert [m.text for m in inbox.read_all(team, "researcher")] == ["for researcher"]
    assert inbox.unread_count(team, "tester") == 1


def test_payload_round_trips(team):
    """Contract: tagged payloads survive storage."""
    inbox.append(team, "researcher", "team-lead", "stop", payload=ShutdownRequest("req-1", "done"))

    [message] = inbox.list_messages(team, "researcher")
    assert message.payload == ShutdownRequest("req-1", "done")
    assert message.kind.value == "shutdown_request"


def test_unread_view_is_finite(team):
    """Boundary: messages appended after the view was created are not yielded."""
    inbox.append(team, "researcher", "team-lead", "before")
    view = inbox.list_unread(team, "researcher")
    inbox.append(team, "researcher", "team-lead", "after")

    assert [m.text for m in view] == ["before"]


def test_unread_view_pages_lazily(team):
    """Contract: paging yields every unread message exactly once."""
    for i in range(7):
        inbox.append(team, "researcher", "team-lead", f"m{i}")

    view = inbox.UnreadMessages(team, "researcher", page_size=3)
    assert [m.text for m in view] == [f"m{i}" for i in range(7)]


def test_unread_view_is_restartable_and_read_only(team):
    """Contract: iterating twice gives the same messages; nothing is marked read."""
    inbox.append(team, "researcher", "team-lead", "a")
    inbox.append(team, "researcher", "team-lead", "b")
    view = inbox.list_unread(team, "researcher")

    assert [m.text for m in view] == [m.text for m in view]
    assert inbox.unread_count(team, "researcher") == 2


def test_read_all_then_empty(team):
    """Contract: read_all returns unread and marks them, a second call is empty."""
    inbox.append(team, "researcher", "team-lead", "a")
    inbox.append(team, "researcher", "team-lead", "b")

    first = inbox.read_all(team, "researcher")
    second = inbox.read_all(team, "researcher")

    assert [m.text for m in first] == ["a", "b"]
    assert all(m.read for m in first)
    assert second == []


def test_mark_read_idempotent(team):
    message = inbox.append(team, "researcher", "team-lead", "a")

    assert inbox.mark_read(team, "researcher", [message.message_id]) == 1
    assert inbox.mark_read(team, "researcher", [message.message_id]) == 0
    assert inbox.mark_read(team, "researcher", []) == 0
    assert inbox.unread_count(team, "researcher") == 0


def test_mark_read_only_targets_recipient(team):
    """Boundary: ids from another queue are not touched."""
    other = inbox.append(team, "tester", "team-lead", "a")

    assert inbox.mark_read(team, "researcher", [other.message_id]) == 0
    assert inbox.unread_count(team, "tester") == 1


def test_broadcast_reaches_active_members_except_sender(team):
    """Contract: one copy per active member; inactive members and the sender are skipped."""
    _live_member(team, "researcher")
    _live_member(team, "tester")
    registry.add_member(team, Member(team=team, name="pending"))

    recipients = inbox.broadcast(team, "standup", sender="researcher")

    assert recipients == ["tester"]
    [message] = inbox.list_messages(team, "tester")
    assert isinstance(message.payload, Broadcast)
    assert inbox.list_messages(team, "researcher") == []
    assert inbox.list_messages(team, "pending") == []


def test_last_activity_tracks_both_directions(team):
    assert inbox.last_activity(team, "researcher") is None
    inbox.append(team, "team-lead", "researcher", "ping")
    assert inbox.last_activity(team, "researcher") is not None


def test_concurrent_appends_lose_nothing(team):
    """Contract: concurrent writers interleave but every message lands once, in per-writer order."""
    writers, per_writer = 4, 25
    errors = []

    def write(sender):
        try:
            for i in range(per_writer):
                inbox.append(team, "team-lead", sender, f"{sender}:{i}")
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=write, args=(f"w{n}",)) for n in range(writers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    messages = inbox.read_all(team, "team-lead")
    assert len(messages) == writers * per_writer
    assert len({m.message_id for m in messages}) == writers * per_writer
    for n in range(writers):
        mine = [int(m.text.split(":")[1]) for m in messages if m.sender == f"w{n}"]
        assert mine == list(range(per_writer))

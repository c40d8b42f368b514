"""Team registry: team and member records, serialized per team."""

import json
import logging
import re
from dataclasses import asdict
from datetime import datetime

from teamspace import config, events
from teamspace.errors import (
    ActiveMembersExist,
    AlreadyExists,
    DuplicateMemberName,
    InvalidTransition,
    MemberNotFound,
    MissingBackendRef,
    NameInvalid,
    TeamNotFound,
)
from teamspace.events import EventSource
from teamspace.lib import store
from teamspace.lib.store import from_row
from teamspace.models import COLOR_PALETTE, MEMBER_TRANSITIONS, Member, MemberState, Team, TeamSettings

logger = logging.getLogger(__name__)

_KEBAB = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

_MEMBER_COLUMNS = "team, name, agent_id, role, model, color, backend_ref, is_active, state, joined_at, left_at"


def validate_name(name: str, kind: str = "team") -> str:
    """Enforce kebab-case and the configured length limit. Returns the name."""
    limit = config.settings().name_max_length
    if not isinstance(name, str) or not name:
        raise NameInvalid(f"{kind} name must be a non-empty string", team=name if kind == "team" else None)
    if len(name) > limit:
        raise NameInvalid(f"{kind} name '{name}' exceeds {limit} characters", team=name if kind == "team" else None)
    if not _KEBAB.match(name):
        raise NameInvalid(
            f"{kind} name '{name}' must be kebab-case (lowercase letters, digits, single hyphens)",
            team=name if kind == "team" else None,
        )
    return name


def _row_to_member(row: store.Row) -> Member:
    return from_row(row, Member)


def _row_to_team(row: store.Row, members: list[Member]) -> Team:
    data = dict(row)
    raw = json.loads(data.pop("settings") or "{}")
    data["settings"] = TeamSettings(**raw)
    data["members"] = members
    return from_row(data, Team)


def _require_team(conn, name: str) -> store.Row:
    row = conn.execute("SELECT * FROM teams WHERE name = ?", (name,)).fetchone()
    if not row:
        raise TeamNotFound(f"Team '{name}' not found", team=name)
    return row


def _require_member(conn, team: str, name: str) -> Member:
    row = conn.execute(
        f"SELECT {_MEMBER_COLUMNS} FROM members WHERE team = ? AND name = ?",
        (team, name),
    ).fetchone()
    if not row:
        raise MemberNotFound(f"Member '{name}' not found in team '{team}'", team=team, member=name)
    return _row_to_member(row)


def _members(conn, team: str, active_only: bool = False) -> list[Member]:
    query = f"SELECT {_MEMBER_COLUMNS} FROM members WHERE team = ?"
    if active_only:
        query += " AND is_active = 1"
    query += " ORDER BY joined_at, rowid"
    return [_row_to_member(row) for row in conn.execute(query, (team,)).fetchall()]


def create_team(
    name: str,
    description: str = "",
    lead_session_id: str | None = None,
    settings: TeamSettings | None = None,
) -> Team:
    validate_name(name)
    settings = settings or TeamSettings()
    now = datetime.now().isoformat()

    with store.transaction(name) as conn:
        if conn.execute("SELECT 1 FROM teams WHERE name = ?", (name,)).fetchone():
            raise AlreadyExists(f"Team '{name}' already exists", team=name)
        conn.execute(
            "INSERT INTO teams (name, description, created_at, lead_session_id, settings) VALUES (?, ?, ?, ?, ?)",
            (name, description, now, lead_session_id, json.dumps(asdict(settings))),
        )
        events.emit(EventSource.REGISTRY, "team.create", team=name)

    logger.info(f"Created team '{name}'")
    return Team(
        name=name,
        description=description,
        created_at=now,
        lead_session_id=lead_session_id,
        settings=settings,
    )


def get_team(name: str) -> Team | None:
    conn = store.ensure()
    row = conn.execute("SELECT * FROM teams WHERE name = ?", (name,)).fetchone()
    if not row:
        return None
    return _row_to_team(row, _members(conn, name))


def require_team(name: str) -> Team:
    team = get_team(name)
    if team is None:
        raise TeamNotFound(f"Team '{name}' not found", team=name)
    return team


def list_teams() -> list[Team]:
    conn = store.ensure()
    rows = conn.execute("SELECT * FROM teams ORDER BY created_at, name").fetchall()
    return [_row_to_team(row, _members(conn, row["name"])) for row in rows]


def teams_for_session(session_id: str) -> list[Team]:
    """Teams led by the given coordinator session."""
    conn = store.ensure()
    rows = conn.execute(
        "SELECT * FROM teams WHERE lead_session_id = ? ORDER BY created_at", (session_id,)
    ).fetchall()
    return [_row_to_team(row, _members(conn, row["name"])) for row in rows]


def backend_refs() -> set[str]:
    """Backend references still held by any member record, across teams."""
    rows = store.ensure().execute("SELECT backend_ref FROM members WHERE backend_ref IS NOT NULL").fetchall()
    return {row["backend_ref"] for row in rows}


def update_settings(team: str, **changes) -> TeamSettings:
    allowed = set(asdict(TeamSettings()))
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValueError(f"Unknown team settings: {', '.join(unknown)}")

    with store.transaction(team) as conn:
        row = _require_team(conn, team)
        current = json.loads(row["settings"] or "{}")
        current.update(changes)
        updated = TeamSettings(**current)
        conn.execute("UPDATE teams SET settings = ? WHERE name = ?", (json.dumps(asdict(updated)), team))
    return updated


def add_member(team: str, member: Member) -> Member:
    """Register a member. Color is assigned from the palette by join order when unset."""
    validate_name(member.name, kind="member")
    if member.is_active and not member.backend_ref:
        raise MissingBackendRef(
            f"Member '{member.name}' cannot be active without a backend reference",
            team=team,
            member=member.name,
        )
    now = datetime.now().isoformat()

    with store.transaction(team) as conn:
        _require_team(conn, team)
        existing = conn.execute(
            "SELECT 1 FROM members WHERE team = ? AND name = ?", (team, member.name)
        ).fetchone()
        if existing:
            raise DuplicateMemberName(
                f"Member '{member.name}' already exists in team '{team}'",
                team=team,
                member=member.name,
            )
        count = conn.execute("SELECT COUNT(*) FROM members WHERE team = ?", (team,)).fetchone()[0]

        added = Member(
            team=team,
            name=member.name,
            role=member.role,
            model=member.model,
            color=member.color or COLOR_PALETTE[count % len(COLOR_PALETTE)],
            backend_ref=member.backend_ref,
            is_active=member.is_active,
            state=member.state,
            joined_at=now,
        )
        conn.execute(
            f"INSERT INTO members ({_MEMBER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                team,
                added.name,
                added.agent_id,
                added.role,
                added.model,
                added.color,
                added.backend_ref,
                int(added.is_active),
                added.state.value,
                now,
                None,
            ),
        )
        events.emit(EventSource.REGISTRY, "member.add", team=team, agent_id=added.agent_id)
    return added


def get_member(team: str, name: str) -> Member | None:
    try:
        return _require_member(store.ensure(), team, name)
    except MemberNotFound:
        return None


def require_member(team: str, name: str) -> Member:
    return _require_member(store.ensure(), team, name)


def list_members(team: str, active_only: bool = False) -> list[Member]:
    conn = store.ensure()
    _require_team(conn, team)
    return _members(conn, team, active_only)


def set_member_state(
    team: str,
    name: str,
    state: MemberState,
    expect: MemberState | None = None,
) -> Member:
    """Move a member along its lifecycle. Same-state is a no-op.

    ``expect`` guards compare-and-set: the change applies only from that state.
    """
    state = MemberState(state)
    with store.transaction(team) as conn:
        member = _require_member(conn, team, name)
        current = member.state
        if expect is not None and current != MemberState(expect):
            raise InvalidTransition(
                f"Member '{name}' is {current.value}, expected {MemberState(expect).value}",
                current=current.value,
                target=state.value,
                team=team,
                member=name,
            )
        if current == state:
            return member
        if state not in MEMBER_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Member '{name}' cannot move from {current.value} to {state.value}",
                current=current.value,
                target=state.value,
                team=team,
                member=name,
            )
        conn.execute(
            "UPDATE members SET state = ? WHERE team = ? AND name = ?",
            (state.value, team, name),
        )
        events.emit(
            EventSource.REGISTRY, f"member.{state.value}", team=team, agent_id=member.agent_id
        )
    member.state = state
    return member


def activate_member(team: str, name: str, backend_ref: str) -> Member:
    """Mark a spawned member live. Requires a backend reference."""
    if not backend_ref:
        raise MissingBackendRef(
            f"Member '{name}' cannot be active without a backend reference", team=team, member=name
        )
    with store.transaction(team) as conn:
        member = set_member_state(team, name, MemberState.ACTIVE, expect=MemberState.SPAWNING)
        conn.execute(
            "UPDATE members SET is_active = 1, backend_ref = ? WHERE team = ? AND name = ?",
            (backend_ref, team, name),
        )
    member.is_active = True
    member.backend_ref = backend_ref
    return member


def deactivate_member(team: str, name: str) -> Member:
    """Set is_active=false and record when the member left. Idempotent."""
    now = datetime.now().isoformat()
    with store.transaction(team) as conn:
        member = _require_member(conn, team, name)
        if not member.is_active and member.state == MemberState.TERMINATED:
            return member
        conn.execute(
            "UPDATE members SET is_active = 0, state = ?, left_at = ? WHERE team = ? AND name = ?",
            (MemberState.TERMINATED.value, now, team, name),
        )
        events.emit(EventSource.REGISTRY, "member.deactivate", team=team, agent_id=member.agent_id)

    logger.info(f"Deactivated {member.agent_id}")
    member.is_active = False
    member.state = MemberState.TERMINATED
    member.left_at = now
    return member


def remove_member(team: str, name: str) -> None:
    """Drop a member record outright. Used to roll back failed spawns."""
    with store.transaction(team) as conn:
        member = _require_member(conn, team, name)
        if member.is_active:
            raise ActiveMembersExist(
                f"Member '{name}' is active and cannot be removed", team=team, active=[name]
            )
        conn.execute("DELETE FROM members WHERE team = ? AND name = ?", (team, name))
        events.emit(EventSource.REGISTRY, "member.remove", team=team, agent_id=member.agent_id)


def delete_team(name: str) -> None:
    """Remove a team, its members and its inboxes. Its tasks are archived, not deleted.

    Every check runs before the first write.
    """
    now = datetime.now().isoformat()
    with store.transaction(name) as conn:
        _require_team(conn, name)
        active = [m.name for m in _members(conn, name, active_only=True)]
        if active:
            raise ActiveMembersExist(
                f"Team '{name}' has active members: {', '.join(active)}",
                team=name,
                active=active,
            )

        conn.execute("DELETE FROM messages WHERE team = ?", (name,))
        conn.execute("DELETE FROM shutdown_requests WHERE team = ?", (name,))
        conn.execute("DELETE FROM members WHERE team = ?", (name,))
        conn.execute(
            "UPDATE tasks SET archived_at = ? WHERE team = ? AND archived_at IS NULL", (now, name)
        )
        conn.execute("DELETE FROM teams WHERE name = ?", (name,))
        events.emit(EventSource.REGISTRY, "team.delete", team=name)

    logger.info(f"Deleted team '{name}'")


__all__ = [
    "activate_member",
    "add_member",
    "backend_refs",
    "create_team",
    "deactivate_member",
    "delete_team",
    "get_member",
    "get_team",
    "list_members",
    "list_teams",
    "remove_member",
    "require_member",
    "require_team",
    "set_member_state",
    "teams_for_session",
    "update_settings",
    "validate_name",
]

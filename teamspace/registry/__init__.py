"""Team registry: who is on which team, and whether they are live."""

from . import api
from .api import (
    activate_member,
    add_member,
    backend_refs,
    create_team,
    deactivate_member,
    delete_team,
    get_member,
    get_team,
    list_members,
    list_teams,
    remove_member,
    require_member,
    require_team,
    set_member_state,
    teams_for_session,
    update_settings,
    validate_name,
)

__all__ = [
    "activate_member",
    "add_member",
    "api",
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

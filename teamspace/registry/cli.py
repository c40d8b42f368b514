"""Team CLI: create, inspect and tear down teams."""

import typer

from teamspace.cli import output
from teamspace.cli.errors import error_feedback
from teamspace.lifecycle import backends
from teamspace.lifecycle.coordinator import Coordinator
from teamspace.models import Team, TeamSettings

from . import api

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Teams and their members.")


def _format_team(team: Team) -> str:
    lines = [f"{team.name}: {team.description}" if team.description else team.name]
    lines.append(f"  created {team.created_at}")
    if team.lead_session_id:
        lines.append(f"  lead session {team.lead_session_id}")
    for member in team.members:
        active = "*" if member.is_active else " "
        role = f" ({member.role})" if member.role else ""
        ref = f" [{member.backend_ref}]" if member.backend_ref else ""
        lines.append(f"  {active} {member.name}{role} {member.state.value}{ref}")
    return "\n".join(lines)


@app.command("list")
@error_feedback
def list_cmd(ctx: typer.Context):
    """List teams."""
    teams = api.list_teams()
    if output.echo_json([{"name": t.name, "members": len(t.members), "active": len(t.active_members)} for t in teams], ctx):
        return
    if not teams:
        output.echo_text("No teams", ctx)
        return
    for team in teams:
        output.echo_text(f"{team.name}  {len(team.active_members)}/{len(team.members)} active", ctx)


@app.command("show")
@error_feedback
def show(ctx: typer.Context, name: str = typer.Argument(..., help="Team name")):
    """Show a team and its members."""
    team = api.require_team(name)
    if output.echo_json(team, ctx):
        return
    output.echo_text(_format_team(team), ctx)


@app.command("create")
@error_feedback
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Team name (kebab-case)"),
    description: str = typer.Option("", "--description", "-d"),
    session: str | None = typer.Option(None, "--session", help="Lead session id, for session-end cleanup"),
    max_tasks: int | None = typer.Option(None, "--max-tasks", help="Max tasks in progress at once"),
    model: str | None = typer.Option(None, "--model", help="Default member model"),
    timeout: float | None = typer.Option(None, "--timeout", help="Spawn liveness timeout in seconds"),
):
    """Create a team."""
    team = api.create_team(
        name,
        description=description,
        lead_session_id=session,
        settings=TeamSettings(max_concurrent_tasks=max_tasks, default_model=model, timeout=timeout),
    )
    if output.echo_json(team, ctx):
        return
    output.echo_text(f"Created: {team.name}", ctx)


@app.command("delete")
@error_feedback
def delete(ctx: typer.Context, name: str = typer.Argument(..., help="Team name")):
    """Shut down every active member, then delete the team."""
    Coordinator(backends.default_backend()).delete_team(name)
    output.echo_text(f"Deleted: {name}", ctx)

"""Task CLI: the team's dependency graph."""

import typer

from teamspace.cli import output
from teamspace.cli.errors import error_feedback
from teamspace.lib.uuid7 import short_id

from . import api
from .format import format_cycles, format_task_detail, format_task_list, render_dot, render_tree

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Team task graph.")


@app.command("add")
@error_feedback
def add(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    subject: str = typer.Argument(..., help="Task subject"),
    owner: str | None = typer.Option(None, "--owner", "-o", help="Owning member"),
    description: str = typer.Option("", "--description", "-d"),
    priority: str | None = typer.Option(None, "--priority", "-p"),
    tags: list[str] | None = typer.Option(None, "--tag", "-t", help="Repeatable"),
    blocked_by: list[str] | None = typer.Option(None, "--blocked-by", "-b", help="Blocking task id (repeatable)"),
):
    """Create a task."""
    task_id = api.add_task(team, subject, owner=owner, description=description, priority=priority, tags=tags or [])
    for blocker in blocked_by or []:
        api.add_blocking_edge(team, api.resolve_task_id(team, blocker), task_id)
    if output.echo_json({"task_id": task_id}, ctx):
        return
    output.echo_text(f"Added: {short_id(task_id)}", ctx)


@app.command("list")
@error_feedback
def list_cmd(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    status: str | None = typer.Option(None, "--status", help="pending, in_progress, completed, cancelled"),
    owner: str | None = typer.Option(None, "--owner", "-o"),
    archived: bool = typer.Option(False, "--archived", help="Include archived tasks"),
):
    """List tasks in creation order."""
    tasks = api.list_tasks(team, status=status, owner=owner, include_archived=archived)
    if output.echo_json(tasks, ctx):
        return
    output.echo_text(format_task_list(tasks), ctx)


@app.command("show")
@error_feedback
def show(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    task_id: str = typer.Argument(..., help="Task id or short id"),
):
    """Show one task."""
    task = api.require_task(team, api.resolve_task_id(team, task_id))
    if output.echo_json(task, ctx):
        return
    output.echo_text(format_task_detail(task), ctx)


@app.command("block")
@error_feedback
def block(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    blocker: str = typer.Argument(..., help="Task that must finish first"),
    blocked: str = typer.Argument(..., help="Task that waits"),
    remove: bool = typer.Option(False, "--remove", "-r", help="Remove the edge instead"),
):
    """Add (or remove) a blocking edge."""
    blocker = api.resolve_task_id(team, blocker)
    blocked = api.resolve_task_id(team, blocked)
    if remove:
        removed = api.remove_blocking_edge(team, blocker, blocked)
        output.echo_text("Removed" if removed else "No such edge", ctx)
        return
    api.add_blocking_edge(team, blocker, blocked)
    output.echo_text(f"{short_id(blocker)} blocks {short_id(blocked)}", ctx)


@app.command("status")
@error_feedback
def status(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    task_id: str = typer.Argument(..., help="Task id or short id"),
    new_status: str = typer.Argument(..., help="in_progress, completed or cancelled"),
):
    """Move a task to a new status."""
    task = api.set_status(team, api.resolve_task_id(team, task_id), new_status)
    output.echo_text(f"{short_id(task.task_id)}: {task.status.value}", ctx)


@app.command("archive")
@error_feedback
def archive(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    task_id: str = typer.Argument(..., help="Task id or short id"),
):
    """Archive a task. Its edges stay."""
    full_id = api.resolve_task_id(team, task_id)
    api.archive_task(team, full_id)
    output.echo_text(f"Archived: {short_id(full_id)}", ctx)


@app.command("graph")
@error_feedback
def graph(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    dot: bool = typer.Option(False, "--dot", help="GraphViz DOT instead of a text tree"),
):
    """Render the dependency graph."""
    tasks = api.list_tasks(team)
    typer.echo(render_dot(tasks) if dot else render_tree(tasks))


@app.command("cycles")
@error_feedback
def cycles(ctx: typer.Context, team: str = typer.Argument(..., help="Team name")):
    """Check for circular dependencies. Exits 1 if any are found."""
    found = api.detect_cycles(team)
    if not output.echo_json(found, ctx):
        typer.echo(format_cycles(found, api.list_tasks(team, include_archived=True)))
    if found:
        raise typer.Exit(1)

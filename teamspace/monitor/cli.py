"""Monitor CLI: dashboards and orphaned pane cleanup."""

import time
from pathlib import Path

import typer

from teamspace.cli import output
from teamspace.cli.errors import error_feedback
from teamspace.lifecycle import backends

from . import dashboard, orphans

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Team health reporting.")


@app.command("dashboard")
@error_feedback
def dashboard_cmd(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    out: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
    tmux: bool = typer.Option(True, "--tmux/--no-tmux", help="Check pane liveness and orphans"),
):
    """Markdown dashboard for one team."""
    if tmux:
        backend = backends.TmuxBackend()
        text = dashboard.render(team, is_alive=backend.is_alive, panes=backend.list_panes())
    else:
        text = dashboard.render(team)

    if out is None:
        typer.echo(text, nl=False)
        return
    out.write_text(text)
    output.echo_text(f"Dashboard written to: {out}", ctx)


@app.command("orphans")
@error_feedback
def orphans_cmd(
    ctx: typer.Context,
    command: str | None = typer.Option(None, "--command", "-c", help="Only panes running this command"),
    kill: bool = typer.Option(False, "--kill", "-k", help="Kill orphaned panes"),
):
    """Find tmux panes no team member owns. Exits 1 if any remain."""
    backend = backends.TmuxBackend()
    found = orphans.find_orphans(backend.list_panes(), command=command)
    results = orphans.kill_orphans(found, backend) if kill else {}
    if output.echo_json({"orphans": found, "killed": results}, ctx):
        if found and not (kill and all(results.values())):
            raise typer.Exit(1)
        return
    if not found:
        output.echo_text("No orphaned panes found ✓", ctx)
        return

    now = time.time()
    for pane in found:
        output.echo_text(
            f"  Pane: {pane.pane_id}  {pane.location}  {pane.command}  {pane.title}  age {orphans.format_age(pane.start_time, now)}",
            ctx,
        )

    if not kill:
        output.echo_text("Re-run with --kill to terminate them", ctx)
        raise typer.Exit(1)

    for pane_id, ok in results.items():
        output.echo_text(f"{'Killed' if ok else 'Failed to kill'} pane: {pane_id}", ctx)
    if not all(results.values()):
        raise typer.Exit(1)

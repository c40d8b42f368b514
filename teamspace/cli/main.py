import json
import logging
import sys

import typer

from teamspace import config
from teamspace.inbox import cli as inbox_cli
from teamspace.lifecycle import backends
from teamspace.lifecycle.coordinator import Coordinator
from teamspace.monitor import cli as monitor_cli
from teamspace.registry import cli as registry_cli
from teamspace.tasks import cli as tasks_cli

from . import output

logger = logging.getLogger(__name__)

app = typer.Typer(invoke_without_command=True, no_args_is_help=False, add_completion=False)
hook_app = typer.Typer(no_args_is_help=True, add_completion=False, help="Editor/agent session hooks.")


@app.callback(invoke_without_command=True)
def common_options_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output in JSON format."),
    quiet_output: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
):
    """Agent teams: spawn members, message them, track their tasks, shut them down."""
    output.set_flags(ctx, json_output, quiet_output)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@app.command("init")
def init():
    """Write the default config to ~/.teamspace/config.yaml if missing."""
    config.init_config()
    typer.echo("Initialized ~/.teamspace")


@hook_app.command("session-end")
def session_end():
    """Clean up teams led by the ending session. Reads hook JSON on stdin."""
    raw = sys.stdin.read()
    try:
        session_id = (json.loads(raw) if raw.strip() else {}).get("session_id")
    except (json.JSONDecodeError, AttributeError) as e:
        logger.warning(f"Ignoring malformed hook input: {e}")
        session_id = None

    if session_id:
        try:
            Coordinator(backends.default_backend()).cleanup_session(session_id)
        except Exception as e:
            logger.error(f"Session cleanup for {session_id} failed: {e}", exc_info=True)
    typer.echo(json.dumps({"continue": True}))


app.add_typer(registry_cli.app, name="team")
app.add_typer(inbox_cli.app, name="inbox")
app.add_typer(tasks_cli.app, name="task")
app.add_typer(monitor_cli.app, name="monitor")
app.add_typer(hook_app, name="hook")


def main() -> None:
    """Entry point for teamspace command."""
    try:
        app()
    except SystemExit:
        raise
    except BaseException as e:
        raise SystemExit(1) from e

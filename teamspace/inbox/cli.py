"""Inbox CLI: read and send team messages."""

import typer

from teamspace import config
from teamspace.cli import output
from teamspace.cli.errors import error_feedback
from teamspace.lifecycle import backends
from teamspace.lifecycle.coordinator import Coordinator
from teamspace.models import Message, PlainMessage

from . import api

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Per-member message queues.")


def _format(message: Message) -> str:
    kind = "" if isinstance(message.payload, PlainMessage) else f" [{message.kind.value}]"
    summary = f" ({message.summary})" if message.summary else ""
    return f"[{message.created_at}] {message.sender}{kind}{summary}: {message.text}"


@app.command("read")
@error_feedback
def read(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    member: str | None = typer.Argument(None, help="Recipient (defaults to the team lead)"),
    peek: bool = typer.Option(False, "--peek", help="Show unread without marking read"),
    show_all: bool = typer.Option(False, "--all", help="Include already read messages"),
):
    """Read a member's inbox. Unread messages are marked read unless --peek."""
    recipient = member or config.settings().lead_name
    if show_all:
        messages = api.list_messages(team, recipient)
    elif peek:
        messages = list(api.list_unread(team, recipient))
    else:
        messages = api.read_all(team, recipient)

    if output.echo_json(messages, ctx):
        return
    if not messages:
        output.echo_text("No messages", ctx)
        return
    for message in messages:
        output.echo_text(_format(message), ctx)


@app.command("send")
@error_feedback
def send(
    ctx: typer.Context,
    team: str = typer.Argument(..., help="Team name"),
    recipient: str = typer.Argument(..., help="Member name, or '*' for every active member"),
    text: str = typer.Argument(..., help="Message text"),
    sender: str | None = typer.Option(None, "--from", help="Sender (defaults to the team lead)"),
    summary: str = typer.Option("", "--summary", "-s"),
):
    """Send a message."""
    coordinator = Coordinator(backends.default_backend())
    sender = sender or coordinator.lead
    if recipient == "*":
        recipients = coordinator.broadcast(team, text, summary=summary, sender=sender)
        output.echo_text(f"Broadcast to {len(recipients)} member(s)", ctx)
        return
    message = coordinator.send_message(team, sender, recipient, text, summary=summary)
    if output.echo_json(message, ctx):
        return
    output.echo_text(f"Sent: {message.message_id[-8:]}", ctx)

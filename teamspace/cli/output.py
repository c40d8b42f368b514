import json as json_lib
from dataclasses import asdict, is_dataclass
from enum import Enum

import typer


def set_flags(ctx: typer.Context, json_output: bool = False, quiet_output: bool = False) -> None:
    if ctx.obj is None or not isinstance(ctx.obj, dict):
        ctx.obj = {}
    ctx.obj["json_output"] = json_output
    ctx.obj["quiet_output"] = quiet_output


def _default(value):
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, set):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def out_json(data) -> str:
    return json_lib.dumps(data, indent=2, default=_default)


def is_json_mode(ctx: typer.Context) -> bool:
    """Check if JSON output mode is enabled."""
    return ctx.obj.get("json_output", False) if ctx.obj else False


def is_quiet_mode(ctx: typer.Context) -> bool:
    """Check if quiet output mode is enabled."""
    return ctx.obj.get("quiet_output", False) if ctx.obj else False


def echo_json(data, ctx: typer.Context) -> bool:
    """Output data as JSON if in JSON mode. Returns True if output, False otherwise."""
    if is_json_mode(ctx):
        typer.echo(out_json(data))
        return True
    return False


def echo_text(msg: str, ctx: typer.Context) -> None:
    """Echo message only if not in quiet mode."""
    if not is_quiet_mode(ctx):
        typer.echo(msg)

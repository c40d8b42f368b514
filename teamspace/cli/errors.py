"""CLI error handling: report domain errors with their context instead of tracebacks."""

from functools import wraps

import typer
from click.exceptions import Exit

from teamspace.errors import TeamspaceError


def _describe(e: TeamspaceError) -> str:
    where = ", ".join(f"{k}={v}" for k, v in e.context().items() if k in ("team", "member", "task_id"))
    return f"{e} ({where})" if where else str(e)


def error_feedback(f):
    """Wrap command to catch exceptions and report them before exiting.

    Validation errors (bad names, cycles, illegal transitions) are reported as
    invalid input; other domain errors keep their class name.
    """

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (SystemExit, Exit):
            raise
        except TeamspaceError as e:
            label = "Invalid input" if isinstance(e, ValueError) else type(e).__name__
            typer.echo(f"{label}: {_describe(e)}", err=True)
            raise typer.Exit(1) from e
        except (ValueError, KeyError, TypeError) as e:
            typer.echo(f"Invalid input: {e}", err=True)
            raise typer.Exit(1) from e
        except OSError as e:
            typer.echo(f"File error: {e}", err=True)
            raise typer.Exit(1) from e
        except Exception as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from e

    return wrapper

"""Main Typer application — imports and registers all CLI commands.

Entry point: ``pipewarden`` (configured via pyproject.toml scripts).

Commands: new, list, switch, delete, config, run, cancel, status, logs,
result, watch, demo.
"""

from __future__ import annotations

import typer

from pipewarden import __version__
from pipewarden.cli.commands.demo import demo_cmd
from pipewarden.cli.commands.new import new_cmd
from pipewarden.cli.commands.output import logs_cmd, result_cmd
from pipewarden.cli.commands.pipeline import cancel_cmd, run_cmd, status_cmd
from pipewarden.cli.commands.projects import config_cmd, delete_cmd, list_cmd, switch_cmd
from pipewarden.cli.commands.watch import watch_cmd
from pipewarden.cli.runtime import configure_logging, console
from pipewarden.config import WardenConfig

app = typer.Typer(
    name="pipewarden",
    help="Pipewarden: supervised, per-user pipeline projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="new", help="Create a new project and make it active.")(new_cmd)
app.command(name="list", help="List your projects.")(list_cmd)
app.command(name="switch", help="Make a project the active one.")(switch_cmd)
app.command(name="delete", help="Delete a project (cancels its run first).")(delete_cmd)
app.command(name="config", help="Show or replace a project's configuration.")(config_cmd)
app.command(name="run", help="Start a project's pipeline.")(run_cmd)
app.command(name="cancel", help="Cancel a project's running pipeline.")(cancel_cmd)
app.command(name="status", help="Show whether a project is running or stopped.")(status_cmd)
app.command(name="logs", help="Show the tail of a project's logs.")(logs_cmd)
app.command(name="result", help="Show the result of a project's last run.")(result_cmd)
app.command(name="watch", help="Watch your projects live.")(watch_cmd)
app.command(name="demo", help="Run the reference pipeline end to end.")(demo_cmd)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"pipewarden {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Override PIPEWARDEN_LOG_LEVEL for this command."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Supervise long-running pipeline projects."""
    configure_logging(log_level or WardenConfig().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

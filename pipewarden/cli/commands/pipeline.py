"""Pipeline control commands: ``run``, ``cancel``, ``status``."""

from __future__ import annotations

import typer

from pipewarden.cli.runtime import (
    PROJECT_ARGUMENT,
    USER_OPTION,
    client_session,
    console,
    resolve_project,
)
from pipewarden.models.events import RunState
from pipewarden.monitor.projection import StatusProjection
from pipewarden.monitor.renderer import StatusRenderer


def run_cmd(
    project_id: str = PROJECT_ARGUMENT,
    user: str = USER_OPTION,
) -> None:
    """Start the project's pipeline unless it is already running."""
    with client_session(user) as session:
        target = resolve_project(session, project_id)
        already = session.get_status(target) == RunState.RUNNING
        record = session.run_pipeline(target)

    verb = "Already running" if already else "Started"
    console.print(
        f"[bold green]{verb}[/bold green] {target} "
        f"(pid {record.identity.pid}, {record.retention_mode.value})"
    )


def cancel_cmd(
    project_id: str = PROJECT_ARGUMENT,
    user: str = USER_OPTION,
) -> None:
    """Stop the project's pipeline.  A stopped project is left alone."""
    with client_session(user) as session:
        target = resolve_project(session, project_id)
        session.cancel_pipeline(target)
        state = session.get_status(target)
    console.print(f"{target}: {state.value}")


def status_cmd(
    project_id: str = PROJECT_ARGUMENT,
    user: str = USER_OPTION,
    show_all: bool = typer.Option(
        False, "--all", "-a", help="Show every project of the user."
    ),
) -> None:
    """Print the observed state of a project (running or stopped)."""
    with client_session(user) as session:
        if show_all:
            warden = session.warden
            projection = StatusProjection(
                warden.store,
                warden.poller,
                result_filename=warden.config.result_filename,
            )
            StatusRenderer(console=console).print_snapshot(projection.snapshot(user))
            return
        target = resolve_project(session, project_id)
        state = session.get_status(target)
    console.print(f"{target}: {state.value}", highlight=False)

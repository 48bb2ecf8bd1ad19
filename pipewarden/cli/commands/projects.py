"""Project management commands: ``list``, ``switch``, ``delete``, ``config``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from pipewarden.cli.runtime import (
    PROJECT_ARGUMENT,
    USER_OPTION,
    client_session,
    console,
    read_config_input,
    resolve_project,
)
from pipewarden.models.events import RunState


def list_cmd(user: str = USER_OPTION) -> None:
    """List projects in creation order, marking the active one."""
    with client_session(user) as session:
        summaries = session.list_projects()

    if not summaries:
        console.print("[dim]No projects yet.  Create one with: pipewarden new[/dim]")
        return

    table = Table(title=f"Projects of {user}")
    table.add_column("", width=2)
    table.add_column("Project", style="cyan", no_wrap=True)
    table.add_column("Created")
    table.add_column("State", justify="center")
    table.add_column("PID", justify="right")

    for summary in summaries:
        state = (
            "[yellow]running[/yellow]"
            if summary.state == RunState.RUNNING
            else "[dim]stopped[/dim]"
        )
        table.add_row(
            "[bold green]*[/bold green]" if summary.active else "",
            summary.project_id,
            summary.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            state,
            str(summary.pid) if summary.pid is not None else "-",
        )
    console.print(table)


def switch_cmd(
    project_id: str = typer.Argument(..., help="Project ID to make active."),
    user: str = USER_OPTION,
) -> None:
    """Make a project the active one."""
    with client_session(user) as session:
        session.switch_project(project_id)
    console.print(f"Active project: [bold]{project_id}[/bold]")


def delete_cmd(
    project_id: str = typer.Argument(..., help="Project ID to delete."),
    user: str = USER_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a project, cancelling its pipeline first if it is running."""
    if not yes:
        typer.confirm(f"Delete project {project_id} and all its files?", abort=True)
    with client_session(user) as session:
        session.delete_project(project_id)
        active = session.context.active_project_id
    console.print(f"[bold]Deleted[/bold] {project_id}")
    console.print(f"[dim]Active project: {active or '-'}[/dim]")


def config_cmd(
    project_id: str = PROJECT_ARGUMENT,
    user: str = USER_OPTION,
    config_file: Path = typer.Option(
        None, "--file", "-f", help="Replace the configuration with this file's contents."
    ),
    config_json: str = typer.Option(
        None, "--set", "-s", help="Replace the configuration with this inline value."
    ),
) -> None:
    """Show a project's configuration, or replace it while no run is live."""
    new_config = read_config_input(config_file, config_json)
    with client_session(user) as session:
        target = resolve_project(session, project_id)
        if new_config is None:
            config = session.get_config(target)
            console.print(config.decode("utf-8", errors="replace"), markup=False, highlight=False)
            return
        session.update_config(target, new_config)
    console.print(f"[green]Configuration of {target} updated ({len(new_config)} bytes).[/green]")

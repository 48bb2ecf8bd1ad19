"""Output commands: ``logs`` and ``result``."""

from __future__ import annotations

from pathlib import Path

import typer

from pipewarden.cli.runtime import (
    PROJECT_ARGUMENT,
    USER_OPTION,
    client_session,
    console,
    resolve_project,
)
from pipewarden.models.artifacts import NotReady
from pipewarden.monitor.renderer import StatusRenderer


def logs_cmd(
    project_id: str = PROJECT_ARGUMENT,
    user: str = USER_OPTION,
    stream: str = typer.Option(
        "both", "--stream", help="Which log to show: stdout, stderr or both."
    ),
) -> None:
    """Show the tail of a project's stdout and stderr."""
    if stream not in ("stdout", "stderr", "both"):
        console.print(f"[bold red]Unknown stream:[/bold red] {stream}")
        raise typer.Exit(code=2)
    with client_session(user) as session:
        target = resolve_project(session, project_id)
        logs = session.get_logs(target)
    StatusRenderer(console=console).print_logs(target, logs, stream=stream)


def result_cmd(
    project_id: str = PROJECT_ARGUMENT,
    user: str = USER_OPTION,
    output: Path = typer.Option(
        None, "--output", "-o", help="Write the raw result bytes to this file."
    ),
) -> None:
    """Show the result of the project's last completed run."""
    with client_session(user) as session:
        target = resolve_project(session, project_id)
        result = session.get_result(target)

    if isinstance(result, NotReady):
        StatusRenderer(console=console).print_result(result)
        raise typer.Exit(code=1)
    if output is not None:
        output.write_bytes(result.data)
        console.print(f"Wrote {result.size_bytes} bytes to {output}")
        return
    StatusRenderer(console=console).print_result(result)

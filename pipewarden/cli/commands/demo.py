"""``pipewarden demo`` — run the reference pipeline end to end.

Creates a project with a small configuration, runs the reference job,
watches it live until it stops and prints the result.
"""

from __future__ import annotations

import json

import typer
from rich.panel import Panel

from pipewarden.cli.runtime import USER_OPTION, client_session, console
from pipewarden.models.artifacts import NotReady
from pipewarden.monitor.projection import StatusProjection
from pipewarden.monitor.renderer import StatusRenderer


def demo_cmd(
    user: str = USER_OPTION,
    iterations: int = typer.Option(10, "--iterations", "-n", help="Iterations to compute."),
    step_seconds: float = typer.Option(
        0.2, "--step", help="Seconds each iteration takes."
    ),
) -> None:
    """Create a demo project, run it and show the live monitor."""
    config = json.dumps({"iterations": iterations, "step_seconds": step_seconds}).encode()
    renderer = StatusRenderer(console=console)

    with client_session(user, serve=True) as session:
        warden = session.warden
        projection = StatusProjection(
            warden.store, warden.poller, result_filename=warden.config.result_filename
        )

        project_id = session.create_project(config)
        console.print(
            Panel(
                f"[bold]Project:[/bold] {project_id}\n"
                f"[bold]Iterations:[/bold] {iterations} x {step_seconds}s",
                title="[bold]Pipewarden demo[/bold]",
                border_style="cyan",
            )
        )
        session.run_pipeline(project_id)
        renderer.render_live(user, projection, warden.bus, heartbeat=0.5, until_idle=True)

        result = session.get_result(project_id)
        logs = session.get_logs(project_id)

    renderer.print_logs(project_id, logs, stream="stdout")
    renderer.print_result(result)
    if isinstance(result, NotReady):
        raise typer.Exit(code=1)

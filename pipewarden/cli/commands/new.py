"""``pipewarden new`` — create a new project.

Persists the configuration verbatim, makes the new project active and
prints its id.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from pipewarden.cli.runtime import USER_OPTION, client_session, console, read_config_input


def new_cmd(
    user: str = USER_OPTION,
    config_file: Path = typer.Option(
        None,
        "--file",
        "-f",
        help="Read the project configuration from this file.",
    ),
    config_json: str = typer.Option(
        None,
        "--set",
        "-s",
        help='Inline configuration, e.g. \'{"iterations": 10}\'.',
    ),
) -> None:
    """Create a new project and make it the active one."""
    config = read_config_input(config_file, config_json) or b""

    with client_session(user) as session:
        project_id = session.create_project(config)
        project = session.active_project()

    console.print()
    console.print(
        Panel(
            "\n".join([
                "[bold green]New project created![/bold green]",
                "",
                f"[bold]Project ID:[/bold]     {project_id}",
                f"[bold]User:[/bold]           {user}",
                f"[bold]Config bytes:[/bold]   {len(config)}",
                f"[bold]Pipeline root:[/bold]  {project.pipeline_root if project else '-'}",
            ]),
            title="[bold]Pipewarden[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )

    # Print the project id plainly for scripting
    console.print(project_id, markup=False, highlight=False)

"""Shared plumbing for CLI commands: logging, sessions, project lookup."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from pipewarden.config import WardenConfig
from pipewarden.core.errors import PipewardenError
from pipewarden.core.warden import Warden, WardenSession

console = Console()

# Shared option declarations
USER_OPTION = typer.Option(
    "default",
    "--user",
    "-u",
    envvar=["PIPEWARDEN_USER", "USER"],
    help="User whose projects to operate on (defaults to $USER).",
)
PROJECT_ARGUMENT = typer.Argument(
    None,
    help="Project ID.  Defaults to the active project.",
    show_default=False,
)


def configure_logging(level: str) -> None:
    """Route the root logger through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )


@contextmanager
def client_session(user_id: str, *, serve: bool = False) -> Iterator[WardenSession]:
    """Open a session against a Warden built from the environment.

    With *serve* the Warden recovers recorded runs and starts its
    background poller, for commands that watch transitions as they
    happen.  Pipewarden errors become a red message and exit code 1.

    One-shot commands refuse ``TRANSIENT_MODE`` (exit code 2): their
    storage root and transient runs would be discarded when the command
    exits, so a later command could never find them.
    """
    warden: Warden | None = None
    session: WardenSession | None = None
    try:
        cfg = WardenConfig()
        if cfg.transient_mode and not serve:
            console.print(
                "[bold red]TRANSIENT_MODE is set:[/bold red] projects and runs last only "
                "as long as one process.",
                highlight=False,
            )
            console.print(
                "[dim]Use `pipewarden demo` or `pipewarden watch`, "
                "or unset TRANSIENT_MODE.[/dim]"
            )
            raise typer.Exit(code=2)
        warden = Warden(cfg)
        if serve:
            warden.start()
        session = warden.session(user_id)
        yield session
    except (PipewardenError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}", highlight=False)
        raise typer.Exit(code=1) from exc
    finally:
        if session is not None:
            session.close()
        if warden is not None:
            warden.shutdown()


def resolve_project(session: WardenSession, project_id: str | None) -> str:
    """Return *project_id*, or the session's active project."""
    if project_id:
        return project_id
    active = session.context.active_project_id
    if active is None:
        console.print("[bold red]No active project.[/bold red]")
        console.print("[dim]Create one with: pipewarden new[/dim]")
        raise typer.Exit(code=1)
    return active


def read_config_input(config_file: Path | None, config_json: str | None) -> bytes | None:
    """Config bytes from ``--file`` or ``--set``; None when neither is given."""
    if config_file is not None and config_json is not None:
        console.print("[bold red]Use either --file or --set, not both.[/bold red]")
        raise typer.Exit(code=2)
    if config_file is not None:
        try:
            return config_file.read_bytes()
        except OSError as exc:
            console.print(f"[bold red]Cannot read {config_file}:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
    if config_json is not None:
        return config_json.encode("utf-8")
    return None

"""``pipewarden watch`` — live status of every project of a user.

Starts the liveness poller and redraws whenever a run starts or stops.
"""

from __future__ import annotations

import typer

from pipewarden.cli.runtime import USER_OPTION, client_session, console
from pipewarden.monitor.projection import StatusProjection
from pipewarden.monitor.renderer import StatusRenderer


def watch_cmd(
    user: str = USER_OPTION,
    heartbeat: float = typer.Option(
        1.0, "--heartbeat", help="Seconds between redraws when nothing changes."
    ),
    until_idle: bool = typer.Option(
        False, "--until-idle", help="Exit once no project is running."
    ),
) -> None:
    """Watch project states live.  Press Ctrl+C to exit."""
    with client_session(user, serve=True) as session:
        warden = session.warden
        projection = StatusProjection(
            warden.store, warden.poller, result_filename=warden.config.result_filename
        )
        StatusRenderer(console=console).render_live(
            user, projection, warden.bus, heartbeat=heartbeat, until_idle=until_idle
        )

"""Rich terminal renderer for the Pipewarden status monitor.

Turns ``StatusSnapshot`` into Rich renderables, with color-coded run
states and a continuous ``Rich.Live`` mode that redraws when the
transition bus reports a start or stop.

Color scheme
------------
- yellow : RUNNING
- dim    : STOPPED
- green  : result ready
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pipewarden.models.artifacts import Artifact, LogTail, NotReady
from pipewarden.models.events import RunState, TransitionEvent

if TYPE_CHECKING:
    from pipewarden.core.transition_bus import TransitionBus
    from pipewarden.monitor.projection import StatusProjection, StatusSnapshot


_STATE_ICONS: dict[RunState, str] = {
    RunState.RUNNING: "[bold yellow]RUNNING[/bold yellow]",
    RunState.STOPPED: "[dim]STOPPED[/dim]",
}


class StatusRenderer:
    """Renders ``StatusSnapshot`` and accessor results as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single snapshot render
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: StatusSnapshot) -> Panel:
        """Render a StatusSnapshot as a Rich Panel containing a Table."""
        table = self._build_project_table(snapshot)

        active = snapshot.active_project
        summary = "  |  ".join(
            [
                f"[bold]User:[/bold] {snapshot.user_id}",
                f"[bold]Projects:[/bold] {len(snapshot.projects)}",
                f"[bold]Running:[/bold] {snapshot.running_count}",
                f"[bold]Active:[/bold] {active.project_id if active else '-'}",
            ]
        )

        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]Pipewarden[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_project_table(self, snapshot: StatusSnapshot) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)

        table.add_column("", width=2)
        table.add_column("Project", min_width=24)
        table.add_column("State", min_width=10, justify="center")
        table.add_column("PID", justify="right", width=8)
        table.add_column("Started", min_width=10)
        table.add_column("Result", justify="center", width=8)

        for project in snapshot.projects:
            started = (
                project.started_at.strftime("%H:%M:%S") if project.started_at else "[dim]-[/dim]"
            )
            table.add_row(
                "[bold green]*[/bold green]" if project.active else "",
                project.project_id,
                _STATE_ICONS.get(project.state, project.state.value),
                str(project.pid) if project.pid is not None else "[dim]-[/dim]",
                started,
                "[green]ready[/green]" if project.result_ready else "[dim]-[/dim]",
            )

        return table

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(
        self,
        user_id: str,
        projection: StatusProjection,
        bus: TransitionBus,
        *,
        heartbeat: float = 1.0,
        until_idle: bool = False,
    ) -> None:
        """Continuously render *user_id*'s projects in Rich Live mode.

        Redraws immediately when a transition for the user is published,
        and at least every *heartbeat* seconds for the clock.  With
        *until_idle* the loop returns once no project is running.  Press
        Ctrl+C to stop.
        """
        changed = threading.Event()

        def _on_transition(event: TransitionEvent) -> None:
            if event.user_id == user_id:
                changed.set()

        token = bus.subscribe_all(_on_transition)
        try:
            with Live(console=self.console, transient=False, auto_refresh=False) as live:
                try:
                    while True:
                        snapshot = projection.snapshot(user_id)
                        live.update(self.render_snapshot(snapshot), refresh=True)
                        if until_idle and snapshot.running_count == 0:
                            break
                        changed.wait(heartbeat)
                        changed.clear()
                except KeyboardInterrupt:
                    live.update(self.render_snapshot(projection.snapshot(user_id)), refresh=True)
        finally:
            bus.unsubscribe(token)

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_snapshot(self, snapshot: StatusSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_logs(self, project_id: str, logs: LogTail, *, stream: str = "both") -> None:
        """Print the stdout and/or stderr tail of a project."""
        if stream in ("stdout", "both"):
            self.console.rule(f"[bold]{project_id}[/bold] stdout")
            for line in logs.stdout:
                self.console.print(line, markup=False, highlight=False)
        if stream in ("stderr", "both"):
            self.console.rule(f"[bold]{project_id}[/bold] stderr")
            for line in logs.stderr:
                self.console.print(line, style="red", markup=False, highlight=False)

    def print_result(self, result: Artifact | NotReady) -> None:
        """Print a result artifact, or why it is not available yet."""
        if isinstance(result, NotReady):
            self.console.print(
                f"[yellow]No result for {result.project_id}:[/yellow] {result.reason}"
            )
            return
        self.console.print(
            Panel(
                Text(result.text()),
                title=f"[bold]{result.path.name}[/bold]",
                subtitle=f"sha256 {result.content_hash[:16]}  |  {result.size_bytes} bytes",
                border_style="green",
            )
        )


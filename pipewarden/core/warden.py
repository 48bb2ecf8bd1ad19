"""Warden — the supervising server and its client-facing sessions.

The Warden wires together the ProjectStore, ProcessSupervisor,
LivenessPoller, TransitionBus and TransitionGatedAccessor into a single
server instance.  One Warden (and one poller) runs per server process and
is shared by every connected client; each client talks to it through a
``WardenSession`` carrying an explicit ``SessionContext``.
"""

from __future__ import annotations

import logging
from types import TracebackType

from pipewarden.config import WardenConfig
from pipewarden.core.accessor import TransitionGatedAccessor
from pipewarden.core.errors import NotFoundError
from pipewarden.core.liveness import LivenessPoller, LivenessSource
from pipewarden.core.project_store import ProjectStore
from pipewarden.core.supervisor import ProcessSupervisor
from pipewarden.core.transition_bus import TransitionBus
from pipewarden.models.artifacts import Artifact, LogTail, NotReady
from pipewarden.models.context import SessionContext
from pipewarden.models.events import RunState
from pipewarden.models.process import ProcessRecord
from pipewarden.models.project import Project, ProjectSummary

logger = logging.getLogger(__name__)


class Warden:
    """Server-level coordinator of projects and their executions.

    Parameters
    ----------
    config:
        Server configuration.  Uses ``WardenConfig()`` defaults if not provided.
    source:
        Optional liveness source override (process-table sampling by default).
    """

    def __init__(
        self,
        config: WardenConfig | None = None,
        *,
        source: LivenessSource | None = None,
    ) -> None:
        self.config = config or WardenConfig()

        # Core subsystems
        self.store = ProjectStore(self.config.resolved_storage_root())
        self.bus = TransitionBus()
        self.poller = LivenessPoller(
            self.store,
            self.bus,
            source,
            interval=self.config.poll_interval_seconds,
        )
        self.supervisor = ProcessSupervisor(
            self.store,
            self.config.pipeline_command,
            retention_mode=self.config.retention_mode,
            cancel_timeout=self.config.cancel_timeout_seconds,
            poller=self.poller,
        )

        logger.info(
            "Warden initialized (storage=%s, retention=%s, poll=%dms)",
            self.store.storage_root,
            self.config.retention_mode.value,
            self.config.poll_interval_ms,
        )

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Warden:
        """Recover recorded executions and start the background poller."""
        self.recover()
        self.poller.start()
        return self

    def recover(self) -> dict[tuple[str, str], RunState]:
        """Reconstruct running/stopped state for every recorded project.

        Persistent executions started by an earlier server instance are
        matched by fingerprint and reported as running; nothing is re-spawned.
        """
        states: dict[tuple[str, str], RunState] = {}
        for user_id, project_id, record in self.store.iter_recorded():
            states[(user_id, project_id)] = self.poller.refresh(user_id, project_id, record)
        running = sum(1 for s in states.values() if s == RunState.RUNNING)
        logger.info("Recovered %d recorded projects (%d running)", len(states), running)
        return states

    def shutdown(self) -> None:
        """Stop polling.  Persistent executions keep running."""
        self.poller.stop()

    def __enter__(self) -> Warden:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    def session(self, user_id: str) -> WardenSession:
        """Open a client session for *user_id*."""
        return WardenSession(self, user_id)


class WardenSession:
    """Client-facing operations for one user, bound to one Warden.

    The session threads an explicit ``SessionContext`` (user id plus
    active project id) through every store and supervisor call, and owns
    an accessor whose subscriptions end when the session is closed.
    """

    def __init__(self, warden: Warden, user_id: str) -> None:
        self._warden = warden
        self._store = warden.store
        active = self._store.get_active(user_id)
        self.context = SessionContext(
            user_id=user_id,
            active_project_id=active.project_id if active else None,
        )
        self.accessor = TransitionGatedAccessor(
            warden.bus,
            result_filename=warden.config.result_filename,
            max_lines=warden.config.log_tail_lines,
        )

    @property
    def warden(self) -> Warden:
        return self._warden

    @property
    def user_id(self) -> str:
        return self.context.user_id

    def _load(self, project_id: str) -> Project:
        return self._store.load(self.user_id, project_id)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, config: bytes = b"") -> str:
        """Create a project, make it active, and return its id."""
        project = self._store.create(self.user_id, config)
        self.context = self.context.with_active(project.project_id)
        return project.project_id

    def list_projects(self) -> list[ProjectSummary]:
        active_id = self.context.active_project_id
        summaries: list[ProjectSummary] = []
        for project in self._store.list(self.user_id):
            record = project.process_record
            summaries.append(
                ProjectSummary(
                    project_id=project.project_id,
                    created_at=project.created_at,
                    active=project.project_id == active_id,
                    state=self.get_status(project.project_id),
                    pid=record.identity.pid if record else None,
                    started_at=record.started_at if record else None,
                )
            )
        return summaries

    def switch_project(self, project_id: str) -> Project:
        """Make *project_id* active and force fresh reads of its data."""
        self._store.set_active(self.user_id, project_id)
        project = self._load(project_id)
        self.context = self.context.with_active(project_id)
        self.accessor.invalidate(project)
        return project

    def active_project(self) -> Project | None:
        project = self._store.get_active(self.user_id)
        self.context = self.context.with_active(project.project_id if project else None)
        return project

    def get_config(self, project_id: str) -> bytes:
        return self._load(project_id).config

    def update_config(self, project_id: str, config: bytes) -> Project:
        return self._store.update_config(self.user_id, project_id, config)

    def delete_project(self, project_id: str) -> None:
        """Cancel any live run, remove the project, and refresh the context."""
        self._store.delete(self.user_id, project_id)
        self.accessor.forget(self.user_id, project_id)
        self.active_project()

    # ------------------------------------------------------------------
    # Pipeline control
    # ------------------------------------------------------------------

    def run_pipeline(self, project_id: str) -> ProcessRecord:
        return self._warden.supervisor.run(self._load(project_id))

    def cancel_pipeline(self, project_id: str) -> None:
        self._warden.supervisor.cancel(self._load(project_id))

    def get_status(self, project_id: str) -> RunState:
        """Status as last observed by the poller, never the caller's intent."""
        if not self._store.exists(self.user_id, project_id):
            raise NotFoundError(self.user_id, project_id)
        return self._warden.poller.state(self.user_id, project_id)

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def get_logs(self, project_id: str) -> LogTail:
        return self.accessor.tail_logs(self._load(project_id))

    def get_result(self, project_id: str) -> Artifact | NotReady:
        return self.accessor.read_result(self._load(project_id))

    def close(self) -> None:
        """End the session: drop every transition subscription."""
        self.accessor.close()

    def __enter__(self) -> WardenSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

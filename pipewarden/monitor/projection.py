"""StatusProjection — pure read-only view of one user's projects.

The projection never stores state.  Every ``snapshot`` re-reads the
Project Store and asks the Liveness Poller for its observed state, so
what it shows is what the poller saw, never what a client asked for.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from pipewarden.core.liveness import LivenessPoller
from pipewarden.core.project_store import ProjectStore
from pipewarden.models.events import RunState
from pipewarden.models.process import RetentionMode


class ProjectStatus(BaseModel):
    """Point-in-time status of a single project."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    state: RunState = RunState.STOPPED
    active: bool = False
    pid: int | None = None
    started_at: datetime | None = None
    retention_mode: RetentionMode | None = None
    result_ready: bool = False


class StatusSnapshot(BaseModel):
    """A frozen snapshot of every project a user owns.

    Computed fresh on every ``snapshot()`` call and never persisted.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    projects: list[ProjectStatus] = []
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def running_count(self) -> int:
        return sum(1 for p in self.projects if p.state == RunState.RUNNING)

    @property
    def active_project(self) -> ProjectStatus | None:
        for project in self.projects:
            if project.active:
                return project
        return None


class StatusProjection:
    """Read-only projection over the Project Store and the poller.

    Parameters
    ----------
    store:
        The Project Store to enumerate projects from.
    poller:
        The Liveness Poller whose observed state is reported.
    result_filename:
        Artifact name checked under each pipeline root for readiness.
    """

    def __init__(
        self,
        store: ProjectStore,
        poller: LivenessPoller,
        *,
        result_filename: str = "result.json",
    ) -> None:
        self._store = store
        self._poller = poller
        self._result_filename = result_filename

    def snapshot(self, user_id: str) -> StatusSnapshot:
        """Produce a point-in-time snapshot of *user_id*'s projects."""
        active = self._store.get_active(user_id)
        active_id = active.project_id if active else None

        projects: list[ProjectStatus] = []
        for project in self._store.list(user_id):
            record = project.process_record
            projects.append(
                ProjectStatus(
                    project_id=project.project_id,
                    state=self._poller.state(user_id, project.project_id),
                    active=project.project_id == active_id,
                    pid=record.identity.pid if record else None,
                    started_at=record.started_at if record else None,
                    retention_mode=record.retention_mode if record else None,
                    result_ready=(project.pipeline_root / self._result_filename).is_file(),
                )
            )
        return StatusSnapshot(user_id=user_id, projects=projects)

"""Project models — durable per-user pipeline instances."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from pipewarden.models.events import RunState
from pipewarden.models.process import ProcessRecord


class ProjectMeta(BaseModel):
    """Bookkeeping persisted as ``project.json`` inside the project directory.

    ``sequence`` is allocated per user at creation time and defines the
    listing order.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    user_id: str
    sequence: int
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    config_hash: str = ""


class Project(BaseModel):
    """A user-scoped, independently configured pipeline instance.

    ``config`` is an opaque byte blob; it is persisted and restored
    verbatim and never interpreted.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    user_id: str
    root_path: Path
    config: bytes = b""
    sequence: int = 0
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    process_record: ProcessRecord | None = None

    @property
    def pipeline_root(self) -> Path:
        """Working directory of the external computation."""
        return self.root_path / "pipeline_root"

    @property
    def stdout_path(self) -> Path:
        return self.root_path / "stdout.txt"

    @property
    def stderr_path(self) -> Path:
        return self.root_path / "stderr.txt"

    @property
    def config_path(self) -> Path:
        return self.root_path / "config.bin"


class ProjectSummary(BaseModel):
    """Listing row handed to the client layer."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    created_at: datetime
    active: bool = False
    state: RunState = RunState.STOPPED
    pid: int | None = None
    started_at: datetime | None = None

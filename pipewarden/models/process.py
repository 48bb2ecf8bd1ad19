"""Process identity and run record models.

A ``ProcessRecord`` describes the most recent execution of a project.  It
is written once per run by the Process Supervisor and never deleted on
process exit, so logs and results stay inspectable after the fact.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class RetentionMode(str, Enum):
    """Whether an execution outlives the server that spawned it."""

    PERSISTENT = "persistent"  # survives supervisor/server restart
    TRANSIENT = "transient"  # terminated when the server process exits


class ProcessFingerprint(BaseModel):
    """Data that tells the recorded process apart from a later PID reuse.

    ``create_time`` is the OS start time (seconds since epoch) as reported
    by psutil.  ``name`` and ``cmdline_hash`` pin the executable identity.
    """

    model_config = ConfigDict(frozen=True)

    create_time: float
    name: str = ""
    cmdline_hash: str = ""


class ProcessIdentity(BaseModel):
    """OS-level identifier plus its disambiguating fingerprint."""

    model_config = ConfigDict(frozen=True)

    pid: int
    fingerprint: ProcessFingerprint

    @property
    def key(self) -> str:
        """Stable string key, distinct for every spawned execution."""
        return f"{self.pid}@{self.fingerprint.create_time:.3f}"


class ProcessRecord(BaseModel):
    """Persisted record of the most recent execution of a project.

    Stored as ``process_record.json`` next to the project's config.
    """

    model_config = ConfigDict(frozen=True)

    identity: ProcessIdentity
    retention_mode: RetentionMode = RetentionMode.PERSISTENT
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    stdout_path: Path
    stderr_path: Path
    command: list[str] = Field(default_factory=list)

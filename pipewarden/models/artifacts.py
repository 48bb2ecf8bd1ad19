"""Log tail and result artifact models served by the accessor."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class LogTail(BaseModel):
    """Last lines of a project's stdout and stderr logs."""

    model_config = ConfigDict(frozen=True)

    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()


class Artifact(BaseModel):
    """Materialized result written by the external computation.

    The content_hash is the SHA-256 hex digest of ``data``.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    data: bytes
    content_hash: str
    modified_at: datetime

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def text(self, encoding: str = "utf-8") -> str:
        return self.data.decode(encoding, errors="replace")


class NotReady(BaseModel):
    """Returned instead of an Artifact when no run has completed yet."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    reason: str = "no completed run"

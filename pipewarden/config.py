"""Server configuration — env-driven, storage-aware.

Centralized config using pydantic-settings for environment variable
support. Reads from a .env file and PIPEWARDEN_* environment variables.
The two deployment switches, ``STORAGE_HOME`` and ``TRANSIENT_MODE``, are
also honoured without the prefix.
"""

from __future__ import annotations

import atexit
import shutil
import sys
import tempfile
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pipewarden.models.process import RetentionMode

_transient_roots: list[Path] = []


def _remove_transient_roots() -> None:
    for root in _transient_roots:
        shutil.rmtree(root, ignore_errors=True)


atexit.register(_remove_transient_roots)


class WardenConfig(BaseSettings):
    """Pipewarden configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export STORAGE_HOME=/srv/pipewarden
        export TRANSIENT_MODE=false
        export PIPEWARDEN_LOG_LEVEL=DEBUG
        export PIPEWARDEN_POLL_INTERVAL_MS=250

    Or via .env file::

        PIPEWARDEN_ENVIRONMENT=production
        TRANSIENT_MODE=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PIPEWARDEN_",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage
    storage_home: Path = Field(
        default=Path.home() / ".pipewarden",
        validation_alias=AliasChoices("STORAGE_HOME", "PIPEWARDEN_STORAGE_HOME"),
    )
    transient_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("TRANSIENT_MODE", "PIPEWARDEN_TRANSIENT_MODE"),
    )

    # Liveness and cancellation
    poll_interval_ms: int = 100
    cancel_timeout_seconds: float = 5.0

    # Accessor
    log_tail_lines: int = 500
    result_filename: str = "result.json"

    # External computation, launched with cwd=<project>/pipeline_root
    pipeline_command: list[str] = Field(
        default_factory=lambda: [sys.executable, "-m", "pipewarden.jobs.reference"]
    )

    @property
    def retention_mode(self) -> RetentionMode:
        """Retention applied to every spawned execution."""
        if self.transient_mode:
            return RetentionMode.TRANSIENT
        return RetentionMode.PERSISTENT

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    def resolved_storage_root(self) -> Path:
        """Return the storage root, creating a self-cleaning one in transient mode.

        The temporary root is removed when the interpreter exits, together
        with the transient executions bound to it.
        """
        if not self.transient_mode:
            return Path(self.storage_home).expanduser()
        root = Path(tempfile.mkdtemp(prefix="pipewarden-"))
        _transient_roots.append(root)
        return root


# Module-level singleton: import as `from pipewarden.config import config`
config = WardenConfig()

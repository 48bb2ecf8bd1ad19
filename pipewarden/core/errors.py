"""Error taxonomy shared by the store, supervisor and poller.

Store and supervisor errors are raised synchronously to the caller and
never retried automatically.  ``StaleIdentityError`` is internal to the
Liveness Poller and never reaches a consumer.
"""

from __future__ import annotations


class PipewardenError(RuntimeError):
    """Base class for every error surfaced by pipewarden."""


class StorageError(PipewardenError):
    """Durable state is unreadable or unwritable (disk full, permission denied)."""


class NotFoundError(PipewardenError):
    """An operation referenced a project id that does not exist."""

    def __init__(self, user_id: str, project_id: str) -> None:
        super().__init__(f"Project {project_id!r} not found for user {user_id!r}")
        self.user_id = user_id
        self.project_id = project_id


class ConflictError(PipewardenError):
    """A configuration mutation was attempted while a run is live."""


class SpawnError(PipewardenError):
    """Launching the pipeline process failed."""


class StaleIdentityError(PipewardenError):
    """A recorded PID now belongs to an unrelated process."""

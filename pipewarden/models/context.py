"""Explicit per-session context threaded through client operations."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SessionContext(BaseModel):
    """Identity of the calling user plus the project they have selected.

    Replaces any process-global "current project": every store and
    supervisor call receives the user id from here.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    active_project_id: str | None = None

    def with_active(self, project_id: str | None) -> SessionContext:
        return self.model_copy(update={"active_project_id": project_id})

"""Run state and transition event models.

Transition events are ephemeral: they are published by the Liveness
Poller, consumed by subscribers, and never persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RunState(str, Enum):
    """Observed execution state of a project."""

    RUNNING = "running"
    STOPPED = "stopped"


class TransitionEvent(BaseModel):
    """Edge-triggered notification that a project changed state.

    ``user_id`` scopes ``project_id``, which is only unique within a
    user's namespace.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    project_id: str
    previous_state: RunState
    new_state: RunState
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def finished(self) -> bool:
        """True for running -> stopped, the moment a result may have changed."""
        return (
            self.previous_state == RunState.RUNNING
            and self.new_state == RunState.STOPPED
        )

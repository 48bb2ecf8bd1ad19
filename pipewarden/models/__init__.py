"""Pipewarden data models — all Pydantic v2, all frozen (immutable)."""

from pipewarden.models.artifacts import Artifact, LogTail, NotReady
from pipewarden.models.context import SessionContext
from pipewarden.models.events import RunState, TransitionEvent
from pipewarden.models.process import (
    ProcessFingerprint,
    ProcessIdentity,
    ProcessRecord,
    RetentionMode,
)
from pipewarden.models.project import Project, ProjectMeta, ProjectSummary

__all__ = [
    # process
    "RetentionMode",
    "ProcessFingerprint",
    "ProcessIdentity",
    "ProcessRecord",
    # project
    "Project",
    "ProjectMeta",
    "ProjectSummary",
    # events
    "RunState",
    "TransitionEvent",
    # artifacts
    "Artifact",
    "LogTail",
    "NotReady",
    # context
    "SessionContext",
]

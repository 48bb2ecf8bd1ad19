"""Directory-backed Project Store — durable per-user project state.

The store exclusively owns on-disk Project and ActiveProjectPointer state.
All mutations are durable before the call returns (atomic replace +
fsync), so a subsequent ``load`` from any process observes them.

Storage layout::

    <storage_root>/<user>/
        _active_project            text file naming current project id
        .user.lock                 serializes create/delete/pointer swaps
        .<project_id>.lock         serializes config/run/cancel per project
        <project_id>/
            project.json
            config.bin
            pipeline_root/
            stdout.txt
            stderr.txt
            process_record.json
"""

from __future__ import annotations

import logging
import re
import shutil
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from pipewarden.core.errors import ConflictError, NotFoundError, StorageError
from pipewarden.core.fsio import (
    PathLock,
    atomic_write_bytes,
    atomic_write_text,
    drop_path_lock,
    path_lock,
    remove_durably,
)
from pipewarden.core.hasher import config_hash
from pipewarden.models.process import ProcessRecord
from pipewarden.models.project import Project, ProjectMeta

logger = logging.getLogger(__name__)

ACTIVE_POINTER_NAME = "_active_project"
META_NAME = "project.json"
CONFIG_NAME = "config.bin"
RECORD_NAME = "process_record.json"
PIPELINE_ROOT_NAME = "pipeline_root"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@-]{0,127}$")


class RunController(Protocol):
    """What the store needs from the Process Supervisor."""

    def is_live(self, project: Project) -> bool: ...

    def cancel(self, project: Project) -> None: ...


def _check_name(kind: str, value: str) -> str:
    if not _SAFE_NAME.match(value or ""):
        raise ValueError(f"Invalid {kind}: {value!r}")
    return value


class ProjectStore:
    """Durable record of each user's projects and active pointer.

    Parameters
    ----------
    storage_root:
        Directory holding one subdirectory per user.  Created lazily.
    """

    def __init__(self, storage_root: Path) -> None:
        self._root = Path(storage_root)
        self._controller: RunController | None = None

    @property
    def storage_root(self) -> Path:
        return self._root

    def attach_controller(self, controller: RunController) -> None:
        """Wire the supervisor used for liveness checks and delete-time cancel."""
        self._controller = controller

    # ------------------------------------------------------------------
    # Paths and locks
    # ------------------------------------------------------------------

    def user_root(self, user_id: str) -> Path:
        return self._root / _check_name("user id", user_id)

    def project_root(self, user_id: str, project_id: str) -> Path:
        return self.user_root(user_id) / _check_name("project id", project_id)

    def user_lock(self, user_id: str) -> PathLock:
        return path_lock(self.user_root(user_id) / ".user.lock")

    def project_lock(self, user_id: str, project_id: str) -> PathLock:
        _check_name("project id", project_id)
        return path_lock(self.user_root(user_id) / f".{project_id}.lock")

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create(self, user_id: str, config: bytes) -> Project:
        """Allocate a fresh project, persist its config and make it active.

        Raises
        ------
        StorageError
            If the user's storage root is not writable.
        """
        try:
            with self.user_lock(user_id).hold():
                sequence = self._next_sequence(user_id)
                ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
                project_id = f"p-{ts}-{uuid.uuid4().hex[:6]}"
                root = self.project_root(user_id, project_id)
                (root / PIPELINE_ROOT_NAME).mkdir(parents=True)

                meta = ProjectMeta(
                    project_id=project_id,
                    user_id=user_id,
                    sequence=sequence,
                    config_hash=config_hash(config),
                )
                atomic_write_bytes(root / CONFIG_NAME, bytes(config))
                atomic_write_text(root / META_NAME, meta.model_dump_json(indent=2))
                self._write_pointer(user_id, project_id)
        except OSError as exc:
            raise StorageError(
                f"Cannot create project under {self._root / user_id}: {exc}"
            ) from exc

        logger.info("Created project %s for user %s", project_id, user_id)
        return self.load(user_id, project_id)

    def load(self, user_id: str, project_id: str) -> Project:
        """Load a project with its config and latest process record.

        Raises
        ------
        NotFoundError
            If the project does not exist.
        StorageError
            If its files are unreadable or corrupt.
        """
        root = self.project_root(user_id, project_id)
        meta_path = root / META_NAME
        if not meta_path.is_file():
            raise NotFoundError(user_id, project_id)
        try:
            meta = ProjectMeta.model_validate_json(meta_path.read_bytes())
            config = (root / CONFIG_NAME).read_bytes()
            record = self._read_record(root)
        except FileNotFoundError as exc:
            # Removed underneath us by a concurrent delete.
            raise NotFoundError(user_id, project_id) from exc
        except (OSError, ValidationError) as exc:
            raise StorageError(f"Cannot read project {project_id}: {exc}") from exc

        return Project(
            project_id=meta.project_id,
            user_id=meta.user_id,
            root_path=root,
            config=config,
            sequence=meta.sequence,
            created_at=meta.created_at,
            process_record=record,
        )

    def exists(self, user_id: str, project_id: str) -> bool:
        return (self.project_root(user_id, project_id) / META_NAME).is_file()

    def list(self, user_id: str) -> list[Project]:
        """Return the user's projects in creation order."""
        projects: list[Project] = []
        for project_id in self._project_ids(user_id):
            try:
                projects.append(self.load(user_id, project_id))
            except NotFoundError:
                continue
        return sorted(projects, key=lambda p: (p.sequence, p.created_at))

    def users(self) -> list[str]:
        """Return every user that has a storage directory."""
        if not self._root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._root.iterdir()
            if entry.is_dir() and _SAFE_NAME.match(entry.name)
        )

    def iter_recorded(self) -> Iterator[tuple[str, str, ProcessRecord]]:
        """Yield ``(user_id, project_id, record)`` for every project ever run.

        Unreadable records are logged and skipped; the poller treats
        such projects as stopped.
        """
        for user_id in self.users():
            for project_id in self._project_ids(user_id):
                root = self.project_root(user_id, project_id)
                try:
                    record = self._read_record(root)
                except (OSError, ValidationError) as exc:
                    logger.warning(
                        "Skipping unreadable process record for %s/%s: %s",
                        user_id, project_id, exc,
                    )
                    continue
                if record is not None:
                    yield user_id, project_id, record

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_config(self, user_id: str, project_id: str, config: bytes) -> Project:
        """Overwrite a project's configuration durably.

        Raises
        ------
        ConflictError
            If a run is currently live for the project.
        """
        with self.project_lock(user_id, project_id).hold():
            project = self.load(user_id, project_id)
            if self._controller is not None and self._controller.is_live(project):
                raise ConflictError(
                    f"Project {project_id} has a live run; cancel it before "
                    f"changing its configuration."
                )
            meta_path = project.root_path / META_NAME
            try:
                meta = ProjectMeta.model_validate_json(meta_path.read_bytes())
                atomic_write_bytes(project.config_path, bytes(config))
                atomic_write_text(
                    meta_path,
                    meta.model_copy(
                        update={"config_hash": config_hash(config)}
                    ).model_dump_json(indent=2),
                )
            except (OSError, ValidationError) as exc:
                raise StorageError(
                    f"Cannot update config of project {project_id}: {exc}"
                ) from exc
        logger.info("Updated config of project %s/%s", user_id, project_id)
        return self.load(user_id, project_id)

    def save_process_record(
        self, user_id: str, project_id: str, record: ProcessRecord
    ) -> None:
        """Replace the project's process record.  Written only by the supervisor."""
        with self.project_lock(user_id, project_id).hold():
            root = self.project_root(user_id, project_id)
            if not (root / META_NAME).is_file():
                raise NotFoundError(user_id, project_id)
            try:
                atomic_write_text(root / RECORD_NAME, record.model_dump_json(indent=2))
            except OSError as exc:
                raise StorageError(
                    f"Cannot persist process record for {project_id}: {exc}"
                ) from exc

    def set_active(self, user_id: str, project_id: str) -> None:
        """Atomically point the user's active project at *project_id*."""
        with self.user_lock(user_id).hold():
            if not self.exists(user_id, project_id):
                raise NotFoundError(user_id, project_id)
            try:
                self._write_pointer(user_id, project_id)
            except OSError as exc:
                raise StorageError(f"Cannot switch active project: {exc}") from exc

    def get_active(self, user_id: str) -> Project | None:
        """Return the active project, or None when the user has none."""
        pointer = self.user_root(user_id) / ACTIVE_POINTER_NAME
        try:
            project_id = pointer.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read active project pointer: {exc}") from exc
        if not project_id:
            return None
        try:
            return self.load(user_id, project_id)
        except (NotFoundError, ValueError):
            return None

    def delete(self, user_id: str, project_id: str) -> None:
        """Cancel any live run, then remove the project and fix the pointer.

        If the deleted project was active, the pointer moves to the most
        recently created remaining project, or is cleared.
        """
        with self.user_lock(user_id).hold(), self.project_lock(user_id, project_id).hold():
            project = self.load(user_id, project_id)
            if self._controller is not None:
                self._controller.cancel(project)

            try:
                active = self._read_pointer(user_id)
                if active == project_id:
                    remaining = [
                        p for p in self.list(user_id) if p.project_id != project_id
                    ]
                    if remaining:
                        self._write_pointer(user_id, remaining[-1].project_id)
                    else:
                        remove_durably(self.user_root(user_id) / ACTIVE_POINTER_NAME)

                # Rename first so concurrent loads see NotFound immediately.
                trash = self.user_root(user_id) / f".trash-{project_id}-{uuid.uuid4().hex[:6]}"
                project.root_path.rename(trash)
                shutil.rmtree(trash, ignore_errors=True)
            except OSError as exc:
                raise StorageError(f"Cannot delete project {project_id}: {exc}") from exc

        lock_path = self.user_root(user_id) / f".{project_id}.lock"
        remove_durably(lock_path)
        drop_path_lock(lock_path)
        logger.info("Deleted project %s/%s", user_id, project_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _project_ids(self, user_id: str) -> list[str]:
        user_root = self.user_root(user_id)
        if not user_root.is_dir():
            return []
        return [
            entry.name
            for entry in user_root.iterdir()
            if entry.is_dir()
            and _SAFE_NAME.match(entry.name)
            and (entry / META_NAME).is_file()
        ]

    def _next_sequence(self, user_id: str) -> int:
        sequences = [p.sequence for p in self.list(user_id)]
        return max(sequences, default=0) + 1

    def _read_pointer(self, user_id: str) -> str | None:
        pointer = self.user_root(user_id) / ACTIVE_POINTER_NAME
        try:
            return pointer.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def _write_pointer(self, user_id: str, project_id: str) -> None:
        atomic_write_text(self.user_root(user_id) / ACTIVE_POINTER_NAME, project_id + "\n")

    @staticmethod
    def _read_record(root: Path) -> ProcessRecord | None:
        path = root / RECORD_NAME
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        return ProcessRecord.model_validate_json(raw)

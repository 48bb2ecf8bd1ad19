"""Process Supervisor — spawn, track, cancel and recover pipeline executions.

Enforces at-most-one-live-instance per project: ``run`` consults the
recorded process identity and only spawns when nothing live is recorded.
Both ``run`` and ``cancel`` are idempotent.  The supervisor exclusively
owns the decision to spawn or cancel and the ``ProcessRecord`` it writes
back into the Project Store.
"""

from __future__ import annotations

import logging
import os
import signal
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import psutil

from pipewarden.core.errors import SpawnError, StorageError
from pipewarden.core.liveness import LivenessSource, ProcessTableSource, capture_identity
from pipewarden.core.spawn import spawn_detached
from pipewarden.core.workdir import resolve_in
from pipewarden.models.events import RunState
from pipewarden.models.process import ProcessRecord, RetentionMode
from pipewarden.models.project import Project

if TYPE_CHECKING:
    from pipewarden.core.liveness import LivenessPoller
    from pipewarden.core.project_store import ProjectStore

logger = logging.getLogger(__name__)

_WAIT_STEP = 0.05
# Extra wait after SIGKILL before giving up on confirmation.
_KILL_GRACE = 1.0


class ProcessSupervisor:
    """Spawns detached pipeline executions and cancels them on request.

    Parameters
    ----------
    store:
        The Project Store the supervisor reads projects from and writes
        process records back into.  The supervisor attaches itself so the
        store can check liveness and cancel before deleting.
    command:
        Argument vector of the external computation.  Relative paths that
        contain a separator are resolved against the pipeline root.
    retention_mode:
        Retention applied to every spawned execution.
    cancel_timeout:
        Seconds ``cancel`` waits for exit after SIGTERM before escalating.
    source:
        Liveness source used when no poller is attached.
    """

    def __init__(
        self,
        store: ProjectStore,
        command: list[str],
        *,
        retention_mode: RetentionMode = RetentionMode.PERSISTENT,
        cancel_timeout: float = 5.0,
        source: LivenessSource | None = None,
        poller: LivenessPoller | None = None,
    ) -> None:
        if not command:
            raise ValueError("pipeline command must not be empty")
        self._store = store
        self._command = list(command)
        self.retention_mode = retention_mode
        self.cancel_timeout = cancel_timeout
        self._source: LivenessSource = source or (
            poller.source if poller is not None else ProcessTableSource()
        )
        self._poller = poller
        store.attach_controller(self)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def is_live(self, project: Project) -> bool:
        """Whether the project's recorded execution is live right now."""
        record = project.process_record
        if record is None:
            return False
        if self._poller is not None:
            state = self._poller.refresh(project.user_id, project.project_id, record)
            return state == RunState.RUNNING
        return self._source.is_alive(record.identity)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, project: Project) -> ProcessRecord:
        """Ensure exactly one live execution of *project* and return its record.

        If the recorded execution is live the existing record is returned
        unchanged.  Otherwise a new detached execution is spawned, its
        identity fingerprinted and persisted, and the new record returned.

        Raises
        ------
        SpawnError
            If the process cannot be launched.  Any prior record is kept.
        """
        user_id, project_id = project.user_id, project.project_id
        with self._store.project_lock(user_id, project_id).hold():
            current = self._store.load(user_id, project_id)
            if current.process_record is not None and self.is_live(current):
                logger.debug("Project %s/%s already running", user_id, project_id)
                return current.process_record

            argv = self._resolve_command(current)
            env = self._child_env(current)
            detached = self.retention_mode == RetentionMode.PERSISTENT
            try:
                current.pipeline_root.mkdir(parents=True, exist_ok=True)
                proc = spawn_detached(
                    argv,
                    cwd=current.pipeline_root,
                    stdout_path=current.stdout_path,
                    stderr_path=current.stderr_path,
                    env=env,
                    detached=detached,
                )
            except (OSError, ValueError) as exc:
                raise SpawnError(
                    f"Cannot launch pipeline for {project_id}: {exc}"
                ) from exc

            record = ProcessRecord(
                identity=capture_identity(proc.pid, argv),
                retention_mode=self.retention_mode,
                started_at=datetime.now(timezone.utc),
                stdout_path=current.stdout_path,
                stderr_path=current.stderr_path,
                command=argv,
            )
            if self._poller is not None:
                self._poller.expect(user_id, project_id, record)
            try:
                self._store.save_process_record(user_id, project_id, record)
            except StorageError:
                # An unrecorded child would be an untracked second instance.
                proc.kill()
                raise

            logger.info(
                "Started pipeline for %s/%s (pid=%d, retention=%s)",
                user_id, project_id, proc.pid, self.retention_mode.value,
            )
            if self._poller is not None:
                self._poller.refresh(user_id, project_id, record)
            return record

    def _resolve_command(self, project: Project) -> list[str]:
        head, *rest = self._command
        if os.path.isabs(head):
            return [head, *rest]
        if os.sep in head or (os.altsep and os.altsep in head):
            head = str(resolve_in(project.pipeline_root, head))
        return [head, *rest]

    @staticmethod
    def _child_env(project: Project) -> dict[str, str]:
        env = dict(os.environ)
        env.update(
            {
                "PIPEWARDEN_USER_ID": project.user_id,
                "PIPEWARDEN_PROJECT_ID": project.project_id,
                "PIPEWARDEN_PIPELINE_ROOT": str(project.pipeline_root),
                "PIPEWARDEN_CONFIG_PATH": str(project.config_path),
            }
        )
        return env

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(self, project: Project) -> None:
        """Request termination of the project's live execution, if any.

        Sends SIGTERM (to the whole process group for persistent runs),
        waits up to ``cancel_timeout`` seconds, then escalates to SIGKILL.
        Never raises for never-run or already-stopped projects; if exit
        cannot be confirmed the call returns with cancellation requested
        and the poller keeps reporting what it observes.
        """
        user_id, project_id = project.user_id, project.project_id
        with self._store.project_lock(user_id, project_id).hold():
            try:
                current = self._store.load(user_id, project_id)
            except StorageError as exc:
                logger.warning("Cancel of %s/%s skipped: %s", user_id, project_id, exc)
                return
            record = current.process_record
            if record is None or not self._source.is_alive(record.identity):
                logger.debug("Cancel of %s/%s: nothing running", user_id, project_id)
                return

            pid = record.identity.pid
            logger.info("Cancelling pipeline %s/%s (pid=%d)", user_id, project_id, pid)
            self._signal(record, signal.SIGTERM)
            if not self._wait_exit(record, self.cancel_timeout):
                logger.warning(
                    "Pipeline %s/%s did not exit within %.1fs, sending SIGKILL",
                    user_id, project_id, self.cancel_timeout,
                )
                self._signal(record, getattr(signal, "SIGKILL", signal.SIGTERM))
                if not self._wait_exit(record, _KILL_GRACE):
                    logger.warning(
                        "Cancellation of %s/%s requested; exit not yet confirmed",
                        user_id, project_id,
                    )

            if self._poller is not None:
                self._poller.refresh(user_id, project_id, record)

    def _signal(self, record: ProcessRecord, sig: int) -> None:
        pid = record.identity.pid
        try:
            if (
                record.retention_mode == RetentionMode.PERSISTENT
                and hasattr(os, "killpg")
                and os.getpgid(pid) == pid
            ):
                os.killpg(pid, sig)
            else:
                psutil.Process(pid).send_signal(sig)
        except (ProcessLookupError, psutil.NoSuchProcess):
            pass
        except (PermissionError, psutil.AccessDenied) as exc:
            logger.warning("Not permitted to signal pid %d: %s", pid, exc)

    def _wait_exit(self, record: ProcessRecord, timeout: float) -> bool:
        deadline = time.monotonic() + max(timeout, 0.0)
        while self._source.is_alive(record.identity):
            if time.monotonic() >= deadline:
                return False
            time.sleep(_WAIT_STEP)
        return True

"""Detached process spawning behind a single ``spawn_detached`` capability.

``detached=True`` (persistent retention) puts the child in its own session
on POSIX, or a detached process group on Windows, so it survives both the
supervisor object being garbage-collected and the server process exiting.

``detached=False`` (transient retention) keeps the child in the server's
process group and registers it for termination when the interpreter
exits.  Garbage collection of the supervisor does not end it either way:
handles live in a module-level registry, not on the supervisor.
"""

from __future__ import annotations

import atexit
import logging
import os
import subprocess
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

_WINDOWS = os.name == "nt"

# pid -> Popen for children that must die with this interpreter.
_transient: dict[int, subprocess.Popen[bytes]] = {}
_transient_lock = threading.Lock()

TRANSIENT_SHUTDOWN_TIMEOUT = 3.0


def spawn_detached(
    argv: list[str],
    *,
    cwd: Path,
    stdout_path: Path,
    stderr_path: Path,
    env: dict[str, str] | None = None,
    detached: bool = True,
) -> subprocess.Popen[bytes]:
    """Launch *argv* with fresh (truncated) stdout/stderr log files.

    Raises ``OSError`` (e.g. ``FileNotFoundError`` for a missing
    executable) if the launch fails; no child is left behind.
    """
    kwargs: dict = {}
    if detached:
        if _WINDOWS:
            kwargs["creationflags"] = (
                getattr(subprocess, "DETACHED_PROCESS", 0)
                | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
            )
        else:
            kwargs["start_new_session"] = True

    # Never append to a stale log: both files are truncated at spawn time.
    with open(stdout_path, "wb") as out_f, open(stderr_path, "wb") as err_f:
        proc = subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=out_f,
            stderr=err_f,
            close_fds=True,
            **kwargs,
        )
    # The child holds its own descriptors; ours are closed by the with-block.

    if not detached:
        with _transient_lock:
            _transient[proc.pid] = proc

    threading.Thread(
        target=_reap, args=(proc,), name=f"pipewarden-reap-{proc.pid}", daemon=True
    ).start()
    return proc


def _reap(proc: subprocess.Popen[bytes]) -> None:
    """Wait for a child so it does not linger as a zombie after exit."""
    returncode = proc.wait()
    logger.debug("Child %d exited with code %s", proc.pid, returncode)
    with _transient_lock:
        _transient.pop(proc.pid, None)


def transient_children() -> list[int]:
    """PIDs of transient children still bound to this interpreter."""
    with _transient_lock:
        return list(_transient)


def terminate_transient(timeout: float = TRANSIENT_SHUTDOWN_TIMEOUT) -> None:
    """Terminate every transient child (runs at interpreter exit)."""
    with _transient_lock:
        procs = list(_transient.values())
    for proc in procs:
        if proc.poll() is None:
            logger.info("Terminating transient child %d", proc.pid)
            proc.terminate()
    for proc in procs:
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()


atexit.register(terminate_transient)

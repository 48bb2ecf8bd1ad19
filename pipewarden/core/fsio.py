"""Durable file writes and cross-process locks for the Project Store.

Every mutation goes through ``atomic_write_bytes``: a temp file in the
same directory is fsynced, renamed over the target with ``os.replace``
and the directory entry is fsynced too, so a later ``load`` from any
process observes the write.

Locks combine a re-entrant thread lock with an ``fcntl`` exclusive lock
on a sidecar file, serializing both threads of this server and other
server processes that share the storage root.
"""

from __future__ import annotations

import fcntl
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO


def _fsync_dir(directory: Path) -> None:
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to *path* atomically and durably."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as tmp_handle:
            tmp_handle.write(data)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    _fsync_dir(path.parent)


def atomic_write_text(path: Path, content: str) -> None:
    atomic_write_bytes(path, content.encode("utf-8"))


def remove_durably(path: Path) -> None:
    """Unlink *path* if present and fsync its directory."""
    try:
        path.unlink()
    except FileNotFoundError:
        return
    _fsync_dir(path.parent)


class PathLock:
    """Re-entrant lock backed by ``flock`` on a sidecar file.

    Only the outermost acquisition in a thread touches the file, so
    nested store calls made while a lock is held do not deadlock.
    """

    def __init__(self, lock_path: Path) -> None:
        self._lock_path = lock_path
        self._rlock = threading.RLock()
        self._depth = 0
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._depth > 0

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._rlock:
            if self._depth == 0:
                self._lock_path.parent.mkdir(parents=True, exist_ok=True)
                handle = self._lock_path.open("a+", encoding="utf-8")
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                self._handle = handle
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._handle is not None:
                    fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
                    self._handle.close()
                    self._handle = None


_registry: dict[str, PathLock] = {}
_registry_lock = threading.Lock()


def path_lock(lock_path: Path) -> PathLock:
    """Return the process-wide ``PathLock`` for *lock_path*."""
    key = str(Path(lock_path).resolve())
    with _registry_lock:
        lock = _registry.get(key)
        if lock is None:
            lock = PathLock(Path(key))
            _registry[key] = lock
        return lock


def drop_path_lock(lock_path: Path) -> None:
    """Forget the registry entry for *lock_path* unless it is currently held."""
    key = str(Path(lock_path).resolve())
    with _registry_lock:
        lock = _registry.get(key)
        if lock is not None and not lock.held:
            del _registry[key]


def tail_lines(path: Path, max_lines: int, *, chunk_size: int = 8192) -> tuple[str, ...]:
    """Return the last *max_lines* lines of a text file, reading from the end.

    A missing file yields an empty tuple.
    """
    if max_lines <= 0:
        return ()
    try:
        handle = path.open("rb")
    except FileNotFoundError:
        return ()
    with handle:
        handle.seek(0, os.SEEK_END)
        position = handle.tell()
        data = b""
        while position > 0 and data.count(b"\n") <= max_lines:
            step = min(chunk_size, position)
            position -= step
            handle.seek(position)
            data = handle.read(step) + data
    lines = data.decode("utf-8", errors="replace").splitlines()
    return tuple(lines[-max_lines:])

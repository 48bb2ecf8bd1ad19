"""Transition-Gated Accessor — log tails and result artifacts, read on edges.

The computation's storage is potentially expensive to query.  The
accessor therefore re-reads only when something could have changed:

- logs: after any TransitionEvent for the project, or a project switch;
- result: after a running -> stopped transition, or a project switch.

Between those moments every call returns the cached copy, no matter how
often it is asked or how the files change underneath.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pipewarden.core.fsio import tail_lines
from pipewarden.core.hasher import sha256_hex
from pipewarden.core.transition_bus import TransitionBus
from pipewarden.models.artifacts import Artifact, LogTail, NotReady
from pipewarden.models.events import TransitionEvent
from pipewarden.models.project import Project

logger = logging.getLogger(__name__)


@dataclass
class _ProjectCache:
    token: str
    logs: LogTail | None = None
    logs_dirty: bool = True
    result: Artifact | NotReady | None = None
    result_dirty: bool = True
    reads: dict[str, int] = field(default_factory=lambda: {"logs": 0, "result": 0})


class TransitionGatedAccessor:
    """Serves cached logs and results, refreshed only at transitions.

    One accessor belongs to one client session.  It subscribes to the
    bus lazily, the first time a project is read, and drops every
    subscription on ``close``.

    Parameters
    ----------
    bus:
        Transition bus to subscribe to.
    result_filename:
        Name of the artifact the computation writes under its pipeline root.
    max_lines:
        Number of trailing log lines returned per stream.
    """

    def __init__(
        self,
        bus: TransitionBus,
        *,
        result_filename: str = "result.json",
        max_lines: int = 500,
    ) -> None:
        self._bus = bus
        self.result_filename = result_filename
        self.max_lines = max_lines
        self._lock = threading.Lock()
        self._caches: dict[tuple[str, str], _ProjectCache] = {}

    # ------------------------------------------------------------------
    # Subscription plumbing
    # ------------------------------------------------------------------

    def _cache_for(self, project: Project) -> _ProjectCache:
        key = (project.user_id, project.project_id)
        with self._lock:
            cache = self._caches.get(key)
            if cache is None:
                token = self._bus.subscribe(key[0], key[1], self._on_transition)
                cache = _ProjectCache(token=token)
                self._caches[key] = cache
            return cache

    def _on_transition(self, event: TransitionEvent) -> None:
        with self._lock:
            cache = self._caches.get((event.user_id, event.project_id))
            if cache is None:
                return
            cache.logs_dirty = True
            if event.finished:
                cache.result_dirty = True

    def invalidate(self, project: Project) -> None:
        """Force the next reads of *project* to hit storage (project switch)."""
        with self._lock:
            cache = self._caches.get((project.user_id, project.project_id))
            if cache is not None:
                cache.logs_dirty = True
                cache.result_dirty = True

    def forget(self, user_id: str, project_id: str) -> None:
        """Drop the cache and subscription of a deleted project."""
        with self._lock:
            cache = self._caches.pop((user_id, project_id), None)
        if cache is not None:
            self._bus.unsubscribe(cache.token)

    def close(self) -> None:
        """Unsubscribe from every project (session end)."""
        with self._lock:
            caches = list(self._caches.values())
            self._caches.clear()
        for cache in caches:
            self._bus.unsubscribe(cache.token)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def tail_logs(self, project: Project) -> LogTail:
        """Return the trailing stdout/stderr lines, re-read only when gated open."""
        cache = self._cache_for(project)
        with self._lock:
            if not cache.logs_dirty and cache.logs is not None:
                return cache.logs
            # Clear before reading so a transition during the read re-opens the gate.
            cache.logs_dirty = False

        logs = LogTail(
            stdout=tail_lines(project.stdout_path, self.max_lines),
            stderr=tail_lines(project.stderr_path, self.max_lines),
        )
        with self._lock:
            cache.logs = logs
            cache.reads["logs"] += 1
        return logs

    def read_result(self, project: Project) -> Artifact | NotReady:
        """Return the materialized result artifact or ``NotReady``."""
        cache = self._cache_for(project)
        with self._lock:
            if not cache.result_dirty and cache.result is not None:
                return cache.result
            cache.result_dirty = False

        result = self._materialize(project)
        with self._lock:
            cache.result = result
            cache.reads["result"] += 1
        return result

    def read_counts(self, project: Project) -> dict[str, int]:
        """How many times storage was actually read for *project*."""
        with self._lock:
            cache = self._caches.get((project.user_id, project.project_id))
            return dict(cache.reads) if cache is not None else {"logs": 0, "result": 0}

    def _materialize(self, project: Project) -> Artifact | NotReady:
        path: Path = project.pipeline_root / self.result_filename
        try:
            data = path.read_bytes()
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return NotReady(project_id=project.project_id)
        except OSError as exc:
            logger.warning("Cannot read result of %s: %s", project.project_id, exc)
            return NotReady(project_id=project.project_id, reason=f"unreadable: {exc}")
        return Artifact(
            path=path,
            data=data,
            content_hash=sha256_hex(data),
            modified_at=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

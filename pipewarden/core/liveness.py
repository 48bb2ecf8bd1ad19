"""Liveness Poller — turns "PID X exists" into "project P is running".

An identifier present in the process table is not sufficient: the
recorded fingerprint (start time plus executable identity) must match
too, otherwise the PID has been reused by an unrelated process and the
project is classified as stopped.

The poller keeps one last-known-running flag per project and publishes a
``TransitionEvent`` only when an observation differs from that flag, so
downstream work is proportional to actual start/stop events rather than
poll ticks.  It never mutates durable state, which makes it safe to
restart at any time: "already running" is reconstructed by matching
recorded fingerprints against the live process table.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import psutil

from pipewarden.core.errors import StaleIdentityError
from pipewarden.core.hasher import cmdline_hash
from pipewarden.models.events import RunState, TransitionEvent
from pipewarden.models.process import ProcessFingerprint, ProcessIdentity, ProcessRecord

if TYPE_CHECKING:
    from pipewarden.core.project_store import ProjectStore
    from pipewarden.core.transition_bus import TransitionBus

logger = logging.getLogger(__name__)

# Seconds of slack allowed when comparing recorded and observed start times.
CREATE_TIME_TOLERANCE = 0.5


# ---------------------------------------------------------------------------
# Liveness sources
# ---------------------------------------------------------------------------


@runtime_checkable
class LivenessSource(Protocol):
    """Answers whether a recorded process identity is currently live.

    The default implementation samples the process table; a platform with
    native exit notification can provide the same interface.
    """

    def is_alive(self, identity: ProcessIdentity) -> bool:
        """Return ``True`` only if *identity* is a live, matching process."""
        ...


class ProcessTableSource:
    """Liveness backed by periodic sampling of the OS process table (psutil)."""

    def __init__(self, *, tolerance: float = CREATE_TIME_TOLERANCE) -> None:
        self._tolerance = tolerance

    def verify(self, identity: ProcessIdentity) -> None:
        """Check *identity* against the process table.

        Raises
        ------
        psutil.NoSuchProcess
            If no process (or only a zombie) holds the PID.
        StaleIdentityError
            If the PID belongs to a different process than the one recorded.
        """
        proc = psutil.Process(identity.pid)
        fp = identity.fingerprint
        if abs(proc.create_time() - fp.create_time) > self._tolerance:
            raise StaleIdentityError(
                f"pid {identity.pid} start time {proc.create_time():.3f} "
                f"!= recorded {fp.create_time:.3f}"
            )
        if proc.status() == psutil.STATUS_ZOMBIE:
            raise psutil.ZombieProcess(identity.pid)
        if fp.name and proc.name() != fp.name:
            raise StaleIdentityError(
                f"pid {identity.pid} runs {proc.name()!r}, recorded {fp.name!r}"
            )
        if fp.cmdline_hash and cmdline_hash(proc.cmdline()) != fp.cmdline_hash:
            raise StaleIdentityError(f"pid {identity.pid} command line changed")

    def is_alive(self, identity: ProcessIdentity) -> bool:
        try:
            self.verify(identity)
        except StaleIdentityError as exc:
            logger.debug("Stale identity treated as stopped: %s", exc)
            return False
        except psutil.NoSuchProcess:
            return False
        except psutil.Error as exc:
            logger.warning(
                "Cannot read process table entry for pid %d, treating as stopped: %s",
                identity.pid, exc,
            )
            return False
        return True


def capture_identity(pid: int, command: list[str]) -> ProcessIdentity:
    """Fingerprint a freshly spawned process.

    Must run before the child is reaped; a zombie still reports its
    start time and name.  The command line is read back from the process
    table, since an interpreter named by a shebang line replaces the argv
    that was passed in.  *command* is hashed only when the process has
    already exited and its command line is gone.
    """
    try:
        proc = psutil.Process(pid)
        create_time = proc.create_time()
        name = proc.name()
    except psutil.Error as exc:
        logger.warning("Could not fingerprint pid %d: %s", pid, exc)
        create_time, name = time.time(), ""
        proc = None

    observed: list[str] = []
    if proc is not None:
        try:
            observed = proc.cmdline()
        except psutil.Error as exc:
            logger.debug("Command line of pid %d unavailable: %s", pid, exc)
    return ProcessIdentity(
        pid=pid,
        fingerprint=ProcessFingerprint(
            create_time=create_time,
            name=name,
            cmdline_hash=cmdline_hash(observed or command),
        ),
    )


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------


@dataclass
class _Observation:
    identity_key: str
    running: bool
    started_at: datetime | None = None


class LivenessPoller:
    """Periodic, debounced running/stopped detection for every recorded project.

    One poller runs per server instance and is shared by all client
    sessions; their status queries read its cached view.

    Parameters
    ----------
    store:
        Project Store to enumerate process records from (read-only).
    bus:
        Transition bus on which edge-triggered events are published.
    source:
        Liveness source.  Defaults to ``ProcessTableSource``.
    interval:
        Polling interval in seconds (default 0.1).
    """

    def __init__(
        self,
        store: ProjectStore,
        bus: TransitionBus,
        source: LivenessSource | None = None,
        *,
        interval: float = 0.1,
    ) -> None:
        self._store = store
        self._bus = bus
        self.source: LivenessSource = source or ProcessTableSource()
        self.interval = interval

        # Guards observation state and keeps per-project event order.
        self._lock = threading.RLock()
        self._states: dict[tuple[str, str], _Observation] = {}
        # Identity keys of runs spawned but not yet observed
        self._expected: dict[tuple[str, str], str] = {}

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background polling thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="pipewarden-liveness", daemon=True
        )
        self._thread.start()
        logger.info("Liveness poller started (interval=%.3fs)", self.interval)

    def stop(self, timeout: float | None = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.interval)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def poll_once(self) -> None:
        """Sample every recorded project once.  Never raises."""
        seen: set[tuple[str, str]] = set()
        try:
            for user_id, project_id, record in self._store.iter_recorded():
                seen.add((user_id, project_id))
                self._observe(user_id, project_id, record)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Liveness poll failed, retrying next tick: %s", exc)
            return

        # Projects deleted since the last tick
        with self._lock:
            for key in [k for k in self._states if k not in seen]:
                if self._store.exists(*key):
                    continue  # recorded after this tick listed its user
                gone = self._states.pop(key)
                if gone.running:
                    self._publish(key, RunState.RUNNING, RunState.STOPPED)

    def refresh(
        self, user_id: str, project_id: str, record: ProcessRecord | None, *, new_run: bool = False
    ) -> RunState:
        """Observe a single project now and return its state.

        ``new_run`` tells the poller that *record* was just written by the
        supervisor, so a run that already exited is still reported as a
        start/stop pair instead of being missed.
        """
        if record is None:
            return self.state(user_id, project_id, sample=False)
        if new_run:
            self.expect(user_id, project_id, record)
        return self._observe(user_id, project_id, record)

    def expect(self, user_id: str, project_id: str, record: ProcessRecord) -> None:
        """Announce a run before its record is saved.

        Whichever observation sees it first, poller thread or supervisor,
        reports it as started, even if it has already exited.
        """
        with self._lock:
            self._expected[(user_id, project_id)] = record.identity.key

    def state(self, user_id: str, project_id: str, *, sample: bool = True) -> RunState:
        """Return the cached state.

        While the background thread runs this never touches the process
        table for a project it has already seen.  Without the thread (one-shot
        CLI use) the project is sampled on every call.
        """
        with self._lock:
            obs = self._states.get((user_id, project_id))
        if obs is not None and (self.running or not sample):
            return RunState.RUNNING if obs.running else RunState.STOPPED
        if not sample:
            return RunState.STOPPED
        try:
            project = self._store.load(user_id, project_id)
        except Exception as exc:  # noqa: BLE001
            logger.debug("State lookup for %s/%s failed: %s", user_id, project_id, exc)
            return RunState.STOPPED
        if project.process_record is None:
            return RunState.STOPPED
        return self._observe(user_id, project_id, project.process_record)

    def is_running(self, user_id: str, project_id: str) -> bool:
        return self.state(user_id, project_id) == RunState.RUNNING

    def _observe(self, user_id: str, project_id: str, record: ProcessRecord) -> RunState:
        key = (user_id, project_id)
        identity_key = record.identity.key
        with self._lock:
            alive = self.source.is_alive(record.identity)
            prev = self._states.get(key)
            if (
                prev is not None
                and prev.started_at is not None
                and record.started_at < prev.started_at
            ):
                # Superseded record read before a newer run was saved.
                return RunState.RUNNING if prev.running else RunState.STOPPED
            new_run = self._expected.get(key) == identity_key
            if new_run:
                del self._expected[key]
            if prev is None and new_run:
                prev = _Observation(identity_key="", running=False)
            was_running = prev.running if prev is not None else False

            if prev is not None and prev.identity_key != identity_key:
                # A different execution than the one last observed.
                if was_running:
                    self._publish(key, RunState.RUNNING, RunState.STOPPED)
                    was_running = False
                if not alive:
                    # It started and finished between two observations.
                    self._publish(key, RunState.STOPPED, RunState.RUNNING)
                    self._publish(key, RunState.RUNNING, RunState.STOPPED)

            if alive != was_running:
                self._publish(
                    key,
                    RunState.RUNNING if was_running else RunState.STOPPED,
                    RunState.RUNNING if alive else RunState.STOPPED,
                )

            self._states[key] = _Observation(
                identity_key=identity_key, running=alive, started_at=record.started_at
            )
        return RunState.RUNNING if alive else RunState.STOPPED

    def _publish(self, key: tuple[str, str], previous: RunState, new: RunState) -> None:
        user_id, project_id = key
        event = TransitionEvent(
            user_id=user_id,
            project_id=project_id,
            previous_state=previous,
            new_state=new,
        )
        logger.info("Project %s/%s: %s -> %s", user_id, project_id, previous.value, new.value)
        self._bus.publish(event)

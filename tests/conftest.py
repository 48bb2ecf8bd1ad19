"""Shared test fixtures for Pipewarden."""

from __future__ import annotations

import sys
import textwrap
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from pipewarden.config import WardenConfig
from pipewarden.core.liveness import LivenessPoller
from pipewarden.core.project_store import ProjectStore
from pipewarden.core.transition_bus import TransitionBus
from pipewarden.core.warden import Warden
from pipewarden.models.events import TransitionEvent
from pipewarden.models.process import (
    ProcessFingerprint,
    ProcessIdentity,
    ProcessRecord,
    RetentionMode,
)


class FakeLivenessSource:
    """Liveness source whose answers are set by the test."""

    def __init__(self) -> None:
        self.alive: set[str] = set()
        self.calls = 0

    def is_alive(self, identity: ProcessIdentity) -> bool:
        self.calls += 1
        return identity.key in self.alive

    def start(self, record: ProcessRecord) -> None:
        self.alive.add(record.identity.key)

    def stop(self, record: ProcessRecord) -> None:
        self.alive.discard(record.identity.key)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def storage_root(tmp_dir: Path) -> Path:
    return tmp_dir / "storage"


@pytest.fixture
def store(storage_root: Path) -> ProjectStore:
    """Provide a fresh ProjectStore in a temp directory."""
    return ProjectStore(storage_root)


@pytest.fixture
def bus() -> TransitionBus:
    return TransitionBus()


@pytest.fixture
def events(bus: TransitionBus) -> list[TransitionEvent]:
    """Every event published on ``bus``, in order."""
    received: list[TransitionEvent] = []
    bus.subscribe_all(received.append)
    return received


@pytest.fixture
def fake_source() -> FakeLivenessSource:
    return FakeLivenessSource()


@pytest.fixture
def poller(
    store: ProjectStore, bus: TransitionBus, fake_source: FakeLivenessSource
) -> LivenessPoller:
    """A poller wired to the fake source.  Its thread is not started."""
    return LivenessPoller(store, bus, fake_source, interval=0.01)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_record(tmp_dir: Path) -> Callable[..., ProcessRecord]:
    """Factory fixture: build a ProcessRecord with sensible defaults."""
    counter = iter(range(40000, 50000))

    def _factory(
        pid: int | None = None,
        create_time: float = 1_700_000_000.0,
        **overrides: Any,
    ) -> ProcessRecord:
        defaults: dict[str, Any] = {
            "identity": ProcessIdentity(
                pid=pid if pid is not None else next(counter),
                fingerprint=ProcessFingerprint(create_time=create_time, name="python"),
            ),
            "retention_mode": RetentionMode.PERSISTENT,
            "started_at": datetime.now(timezone.utc),
            "stdout_path": tmp_dir / "stdout.txt",
            "stderr_path": tmp_dir / "stderr.txt",
            "command": ["python", "job.py"],
        }
        defaults.update(overrides)
        return ProcessRecord(**defaults)

    return _factory


@pytest.fixture
def make_job(tmp_dir: Path) -> Callable[[str], list[str]]:
    """Factory fixture: write a tiny Python job and return its command line."""
    counter = iter(range(1000))

    def _factory(body: str) -> list[str]:
        path = tmp_dir / "jobs" / f"job_{next(counter)}.py"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(path)]

    return _factory


@pytest.fixture
def sleeper_job(make_job: Callable[[str], list[str]]) -> list[str]:
    """A job that prints once and then sleeps far longer than any test."""
    return make_job(
        """
        import time
        print("sleeping", flush=True)
        time.sleep(120)
        """
    )


@pytest.fixture
def shell_sleeper_job(tmp_dir: Path) -> list[str]:
    """An executable `#!/bin/sh` job; the kernel rewrites its command line."""
    if not Path("/bin/sh").exists():
        pytest.skip("needs /bin/sh")
    path = tmp_dir / "jobs" / "sleeper.sh"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\necho sleeping\nsleep 120\necho done\n", encoding="utf-8")
    path.chmod(0o755)
    return [str(path)]


@pytest.fixture
def make_warden(tmp_dir: Path) -> Iterator[Callable[..., Warden]]:
    """Factory fixture: a started Warden on temp storage.

    Every live run is cancelled and every Warden shut down at teardown.
    """
    wardens: list[Warden] = []

    def _factory(command: list[str] | None = None, **overrides: Any) -> Warden:
        settings: dict[str, Any] = {
            "storage_home": tmp_dir / "home",
            "transient_mode": False,
            "poll_interval_ms": 20,
            "cancel_timeout_seconds": 2.0,
        }
        if command is not None:
            settings["pipeline_command"] = command
        settings.update(overrides)
        warden = Warden(WardenConfig(**settings)).start()
        wardens.append(warden)
        return warden

    yield _factory

    for warden in wardens:
        for user_id in warden.store.users():
            for project in warden.store.list(user_id):
                warden.supervisor.cancel(project)
        warden.shutdown()

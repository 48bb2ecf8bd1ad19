"""Tests for the status projection and its Rich renderer."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from rich.console import Console

from pipewarden.models.artifacts import Artifact, LogTail, NotReady
from pipewarden.models.events import RunState
from pipewarden.monitor.projection import StatusProjection, StatusSnapshot
from pipewarden.monitor.renderer import StatusRenderer


@pytest.fixture
def projection(store, poller) -> StatusProjection:
    return StatusProjection(store, poller)


@pytest.fixture
def console() -> Console:
    return Console(record=True, width=140, force_terminal=False)


class TestStatusProjection:
    def test_empty_user(self, projection):
        snapshot = projection.snapshot("alice")
        assert snapshot.projects == []
        assert snapshot.running_count == 0
        assert snapshot.active_project is None

    def test_reflects_store_and_poller(self, projection, store, fake_source, make_record):
        first = store.create("alice", b"")
        second = store.create("alice", b"")
        record = make_record(pid=31337)
        store.save_process_record("alice", first.project_id, record)
        fake_source.start(record)
        (second.pipeline_root / "result.json").write_text("{}")

        snapshot = projection.snapshot("alice")

        assert [p.project_id for p in snapshot.projects] == [first.project_id, second.project_id]
        running, stopped = snapshot.projects
        assert running.state == RunState.RUNNING
        assert running.pid == 31337
        assert running.active is False
        assert stopped.state == RunState.STOPPED
        assert stopped.active is True
        assert stopped.result_ready is True
        assert snapshot.running_count == 1
        assert snapshot.active_project.project_id == second.project_id

    def test_snapshot_is_recomputed(self, projection, store):
        store.create("alice", b"")
        assert len(projection.snapshot("alice").projects) == 1
        store.create("alice", b"")
        assert len(projection.snapshot("alice").projects) == 2


class TestStatusRenderer:
    def test_render_snapshot(self, projection, store, fake_source, make_record, console):
        project = store.create("alice", b"")
        record = make_record()
        store.save_process_record("alice", project.project_id, record)
        fake_source.start(record)

        StatusRenderer(console=console).print_snapshot(projection.snapshot("alice"))
        text = console.export_text()

        assert project.project_id in text
        assert "RUNNING" in text
        assert "Pipewarden" in text

    def test_render_empty_snapshot(self, console):
        StatusRenderer(console=console).print_snapshot(StatusSnapshot(user_id="bob"))
        assert "bob" in console.export_text()

    def test_print_logs(self, console):
        logs = LogTail(stdout=("hello [not markup]",), stderr=("oops",))
        StatusRenderer(console=console).print_logs("p-1", logs)
        text = console.export_text()
        assert "hello [not markup]" in text
        assert "oops" in text

    def test_print_logs_single_stream(self, console):
        logs = LogTail(stdout=("out",), stderr=("err",))
        StatusRenderer(console=console).print_logs("p-1", logs, stream="stderr")
        text = console.export_text()
        assert "err" in text
        assert "out" not in text

    def test_print_not_ready(self, console):
        StatusRenderer(console=console).print_result(NotReady(project_id="p-1"))
        assert "no completed run" in console.export_text()

    def test_print_artifact(self, tmp_dir, console):
        artifact = Artifact(
            path=tmp_dir / "result.json",
            data=b'{"total": 285}',
            content_hash="ab" * 32,
            modified_at=datetime.now(timezone.utc),
        )
        StatusRenderer(console=console).print_result(artifact)
        text = console.export_text()
        assert '"total": 285' in text
        assert "result.json" in text

    def test_render_live_returns_when_idle(self, projection, bus, store, console):
        store.create("alice", b"")
        StatusRenderer(console=console).render_live(
            "alice", projection, bus, heartbeat=0.01, until_idle=True
        )
        assert bus.subscriber_count() == 0

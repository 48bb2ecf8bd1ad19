"""Tests for Pipewarden data models."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from pipewarden.models import (
    Artifact,
    LogTail,
    NotReady,
    ProcessFingerprint,
    ProcessIdentity,
    Project,
    RunState,
    SessionContext,
    TransitionEvent,
)


class TestProcessIdentity:
    def test_key_combines_pid_and_start_time(self):
        identity = ProcessIdentity(
            pid=123, fingerprint=ProcessFingerprint(create_time=1700000000.25)
        )
        assert identity.key == "123@1700000000.250"

    def test_same_pid_different_start_is_different_identity(self):
        a = ProcessIdentity(pid=7, fingerprint=ProcessFingerprint(create_time=1.0))
        b = ProcessIdentity(pid=7, fingerprint=ProcessFingerprint(create_time=2.0))
        assert a.key != b.key

    def test_frozen(self):
        identity = ProcessIdentity(pid=1, fingerprint=ProcessFingerprint(create_time=1.0))
        with pytest.raises(ValidationError):
            identity.pid = 2


class TestProcessRecord:
    def test_json_roundtrip_preserves_identity(self, make_record):
        record = make_record(pid=4242)
        restored = type(record).model_validate_json(record.model_dump_json())
        assert restored == record
        assert restored.identity.key == record.identity.key


class TestProject:
    def test_derived_paths(self, tmp_path: Path):
        project = Project(project_id="p-1", user_id="alice", root_path=tmp_path / "p-1")
        assert project.pipeline_root == tmp_path / "p-1" / "pipeline_root"
        assert project.stdout_path.name == "stdout.txt"
        assert project.stderr_path.name == "stderr.txt"
        assert project.config_path.name == "config.bin"

    def test_config_is_opaque_bytes(self, tmp_path: Path):
        blob = bytes(range(256))
        project = Project(project_id="p-1", user_id="alice", root_path=tmp_path, config=blob)
        assert project.config == blob
        assert project.process_record is None


class TestTransitionEvent:
    def test_finished_only_for_running_to_stopped(self):
        done = TransitionEvent(
            user_id="u", project_id="p",
            previous_state=RunState.RUNNING, new_state=RunState.STOPPED,
        )
        started = TransitionEvent(
            user_id="u", project_id="p",
            previous_state=RunState.STOPPED, new_state=RunState.RUNNING,
        )
        assert done.finished is True
        assert started.finished is False

    def test_timestamp_defaults_to_utc_now(self):
        event = TransitionEvent(
            user_id="u", project_id="p",
            previous_state=RunState.STOPPED, new_state=RunState.RUNNING,
        )
        assert event.timestamp.tzinfo is not None


class TestArtifacts:
    def test_artifact_text_and_size(self, tmp_path: Path):
        artifact = Artifact(
            path=tmp_path / "result.json",
            data=b'{"ok": true}',
            content_hash="abc",
            modified_at=datetime.now(timezone.utc),
        )
        assert artifact.size_bytes == 12
        assert artifact.text() == '{"ok": true}'

    def test_not_ready_default_reason(self):
        assert NotReady(project_id="p").reason == "no completed run"

    def test_log_tail_defaults_empty(self):
        tail = LogTail()
        assert tail.stdout == ()
        assert tail.stderr == ()


class TestSessionContext:
    def test_with_active_returns_new_context(self):
        ctx = SessionContext(user_id="alice")
        switched = ctx.with_active("p-2")
        assert ctx.active_project_id is None
        assert switched.active_project_id == "p-2"
        assert switched.user_id == "alice"

"""End-to-end integration tests — real processes through a running Warden.

These tests exercise the ProjectStore, ProcessSupervisor, LivenessPoller,
TransitionBus and TransitionGatedAccessor working together behind the
client session operations.
"""

from __future__ import annotations

import json
import subprocess
import sys
import textwrap
import time
from collections.abc import Callable

import pytest

from pipewarden.core import spawn
from pipewarden.core.errors import ConflictError, NotFoundError
from pipewarden.core.liveness import ProcessTableSource
from pipewarden.models.artifacts import Artifact, NotReady
from pipewarden.models.events import RunState, TransitionEvent
from pipewarden.models.process import RetentionMode

pytestmark = pytest.mark.integration


def wait_until(predicate: Callable[[], bool], timeout: float = 20.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not met in time"
        time.sleep(0.02)


def transitions(events: list[TransitionEvent], project_id: str) -> list[tuple[str, str]]:
    return [
        (e.previous_state.value, e.new_state.value)
        for e in events
        if e.project_id == project_id
    ]


class TestReferencePipeline:
    """The default reference job, run to completion."""

    def test_run_to_completion(self, make_warden):
        warden = make_warden()
        events: list[TransitionEvent] = []
        warden.bus.subscribe_all(events.append)
        session = warden.session("alice")

        project_id = session.create_project(
            json.dumps({"iterations": 10, "step_seconds": 0.05}).encode()
        )
        assert isinstance(session.get_result(project_id), NotReady)

        record = session.run_pipeline(project_id)
        assert record.command[0] == sys.executable
        wait_until(lambda: session.get_status(project_id) == RunState.STOPPED)
        wait_until(lambda: len(transitions(events, project_id)) >= 2)

        assert transitions(events, project_id) == [
            ("stopped", "running"),
            ("running", "stopped"),
        ]
        result = session.get_result(project_id)
        assert isinstance(result, Artifact)
        assert json.loads(result.data)["total"] == sum(i * i for i in range(10))
        assert "done total=285" in session.get_logs(project_id).stdout

    def test_resume_after_cancel(self, make_warden):
        warden = make_warden()
        session = warden.session("alice")
        project_id = session.create_project(
            json.dumps({"iterations": 40, "step_seconds": 0.05}).encode()
        )
        project = warden.store.load("alice", project_id)
        progress = project.pipeline_root / "progress.json"

        session.run_pipeline(project_id)
        wait_until(
            lambda: progress.exists()
            and len(json.loads(progress.read_text())["values"]) >= 3
        )
        session.cancel_pipeline(project_id)
        assert session.get_status(project_id) == RunState.STOPPED

        session.run_pipeline(project_id)
        wait_until(lambda: session.get_status(project_id) == RunState.STOPPED)
        wait_until(lambda: isinstance(session.get_result(project_id), Artifact))

        stdout = warden.store.load("alice", project_id).stdout_path.read_text()
        assert "resuming at iteration" in stdout
        result = json.loads(session.get_result(project_id).data)
        assert result["values"] == [i * i for i in range(40)]


class TestSessions:
    def test_users_are_isolated(self, make_warden, sleeper_job):
        warden = make_warden(sleeper_job)
        alice = warden.session("alice")
        bob = warden.session("bob")

        a = alice.create_project(b"")
        b = bob.create_project(b"")
        alice.run_pipeline(a)

        wait_until(lambda: alice.get_status(a) == RunState.RUNNING)
        assert bob.get_status(b) == RunState.STOPPED
        assert [p.project_id for p in alice.list_projects()] == [a]
        with pytest.raises(NotFoundError):
            bob.get_status(a)

    def test_list_reports_active_and_state(self, make_warden, sleeper_job):
        warden = make_warden(sleeper_job)
        session = warden.session("alice")
        first = session.create_project(b"")
        second = session.create_project(b"")
        session.run_pipeline(first)
        wait_until(lambda: session.get_status(first) == RunState.RUNNING)

        rows = {row.project_id: row for row in session.list_projects()}

        assert rows[first].state == RunState.RUNNING
        assert rows[first].pid is not None
        assert rows[second].active is True
        assert rows[first].active is False

    def test_config_change_rejected_while_running(self, make_warden, sleeper_job):
        warden = make_warden(sleeper_job)
        session = warden.session("alice")
        project_id = session.create_project(b"v1")
        session.run_pipeline(project_id)

        with pytest.raises(ConflictError):
            session.update_config(project_id, b"v2")

        session.cancel_pipeline(project_id)
        session.update_config(project_id, b"v2")
        assert session.get_config(project_id) == b"v2"

    def test_shell_script_pipeline_runs_once(self, make_warden, shell_sleeper_job):
        warden = make_warden(shell_sleeper_job)
        session = warden.session("alice")
        project_id = session.create_project(b"v1")

        first = session.run_pipeline(project_id)
        time.sleep(0.3)

        assert session.get_status(project_id) == RunState.RUNNING
        assert session.run_pipeline(project_id) == first
        with pytest.raises(ConflictError):
            session.update_config(project_id, b"v2")

        session.cancel_pipeline(project_id)
        wait_until(lambda: session.get_status(project_id) == RunState.STOPPED)
        assert not warden.supervisor.is_live(warden.store.load("alice", project_id))

    def test_delete_running_project_cancels_first(self, make_warden, sleeper_job):
        warden = make_warden(sleeper_job)
        events: list[TransitionEvent] = []
        warden.bus.subscribe_all(events.append)
        session = warden.session("alice")
        keep = session.create_project(b"")
        doomed = session.create_project(b"")
        record = session.run_pipeline(doomed)
        wait_until(lambda: session.get_status(doomed) == RunState.RUNNING)

        session.delete_project(doomed)

        assert not warden.poller.source.is_alive(record.identity)
        assert session.context.active_project_id == keep
        time.sleep(0.2)
        assert transitions(events, doomed).count(("running", "stopped")) == 1

    def test_switch_project_refreshes_reads(self, make_warden, make_job):
        warden = make_warden(make_job("print('hello')"))
        session = warden.session("alice")
        first = session.create_project(b"")
        session.create_project(b"")

        project = session.switch_project(first)
        project.stdout_path.write_text("written out of band\n")
        assert session.get_logs(first).stdout == ("written out of band",)

        project.stdout_path.write_text("changed again\n")
        assert session.get_logs(first).stdout == ("written out of band",)
        session.switch_project(first)
        assert session.get_logs(first).stdout == ("changed again",)

    def test_close_drops_subscriptions(self, make_warden):
        warden = make_warden()
        session = warden.session("alice")
        project_id = session.create_project(b"")
        session.get_logs(project_id)
        session.get_result(project_id)
        assert warden.bus.subscriber_count() == 1
        session.close()
        assert warden.bus.subscriber_count() == 0


class TestRecoveryAndRetention:
    def test_restart_adopts_running_process(self, make_warden, sleeper_job):
        first = make_warden(sleeper_job)
        session = first.session("alice")
        project_id = session.create_project(b"")
        record = session.run_pipeline(project_id)
        first.shutdown()

        second = make_warden(sleeper_job)
        states = second.recover()

        assert states[("alice", project_id)] == RunState.RUNNING
        again = second.session("alice").run_pipeline(project_id)
        assert again.identity == record.identity

    def test_restart_sees_exit_that_happened_while_down(self, make_warden, sleeper_job):
        first = make_warden(sleeper_job)
        session = first.session("alice")
        project_id = session.create_project(b"")
        session.run_pipeline(project_id)
        session.cancel_pipeline(project_id)
        first.shutdown()

        second = make_warden(sleeper_job)
        assert second.session("alice").get_status(project_id) == RunState.STOPPED

    def test_persistent_run_survives_server_exit(self, make_warden, sleeper_job, tmp_dir):
        server = textwrap.dedent(
            """
            import json, sys
            from pipewarden.config import WardenConfig
            from pipewarden.core.warden import Warden

            cfg = WardenConfig(
                storage_home=sys.argv[1],
                transient_mode=False,
                pipeline_command=json.loads(sys.argv[2]),
            )
            warden = Warden(cfg).start()
            session = warden.session("alice")
            project_id = session.create_project(b"")
            record = session.run_pipeline(project_id)
            print(json.dumps({"project_id": project_id, "pid": record.identity.pid}))
            warden.shutdown()
            """
        )
        completed = subprocess.run(
            [sys.executable, "-c", server, str(tmp_dir / "home"), json.dumps(sleeper_job)],
            capture_output=True,
            text=True,
            timeout=60,
            check=True,
        )
        started = json.loads(completed.stdout.strip().splitlines()[-1])

        warden = make_warden(sleeper_job)
        project = warden.store.load("alice", started["project_id"])

        assert project.process_record is not None
        assert project.process_record.identity.pid == started["pid"]
        assert ProcessTableSource().is_alive(project.process_record.identity)
        assert warden.session("alice").get_status(project.project_id) == RunState.RUNNING

    def test_transient_mode_binds_run_to_server(self, make_warden, sleeper_job):
        warden = make_warden(sleeper_job, transient_mode=True)
        session = warden.session("alice")
        project_id = session.create_project(b"")

        record = session.run_pipeline(project_id)

        assert record.retention_mode == RetentionMode.TRANSIENT
        assert record.identity.pid in spawn.transient_children()
        assert warden.store.storage_root.name.startswith("pipewarden-")

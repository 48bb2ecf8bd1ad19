"""Tests for WardenConfig — env-driven server configuration."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from pipewarden.config import WardenConfig
from pipewarden.models.process import RetentionMode


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for name in (
        "STORAGE_HOME",
        "TRANSIENT_MODE",
        "PIPEWARDEN_STORAGE_HOME",
        "PIPEWARDEN_TRANSIENT_MODE",
        "PIPEWARDEN_ENVIRONMENT",
        "PIPEWARDEN_LOG_LEVEL",
        "PIPEWARDEN_POLL_INTERVAL_MS",
        "PIPEWARDEN_PIPELINE_COMMAND",
    ):
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)


class TestWardenConfig:
    def test_defaults(self):
        cfg = WardenConfig()
        assert cfg.environment == "development"
        assert cfg.log_level == "INFO"
        assert cfg.transient_mode is False
        assert cfg.poll_interval_ms == 100
        assert cfg.cancel_timeout_seconds == 5.0
        assert cfg.result_filename == "result.json"
        assert cfg.storage_home == Path.home() / ".pipewarden"

    def test_default_command_runs_reference_job(self):
        cfg = WardenConfig()
        assert cfg.pipeline_command == [sys.executable, "-m", "pipewarden.jobs.reference"]

    def test_unprefixed_storage_home(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORAGE_HOME", str(tmp_path / "srv"))
        cfg = WardenConfig()
        assert cfg.storage_home == tmp_path / "srv"
        assert cfg.resolved_storage_root() == tmp_path / "srv"

    def test_prefixed_storage_home(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PIPEWARDEN_STORAGE_HOME", str(tmp_path / "alt"))
        assert WardenConfig().storage_home == tmp_path / "alt"

    def test_transient_mode_from_env(self, monkeypatch):
        monkeypatch.setenv("TRANSIENT_MODE", "true")
        cfg = WardenConfig()
        assert cfg.transient_mode is True
        assert cfg.retention_mode == RetentionMode.TRANSIENT

    def test_persistent_by_default(self):
        assert WardenConfig().retention_mode == RetentionMode.PERSISTENT

    def test_transient_root_is_temporary(self, tmp_path):
        cfg = WardenConfig(transient_mode=True, storage_home=tmp_path / "unused")
        root = cfg.resolved_storage_root()
        assert root.is_dir()
        assert root.name.startswith("pipewarden-")
        assert root != tmp_path / "unused"

    def test_poll_interval_seconds(self, monkeypatch):
        monkeypatch.setenv("PIPEWARDEN_POLL_INTERVAL_MS", "250")
        assert WardenConfig().poll_interval_seconds == pytest.approx(0.25)

    def test_log_level_from_env(self, monkeypatch):
        monkeypatch.setenv("PIPEWARDEN_LOG_LEVEL", "DEBUG")
        assert WardenConfig().log_level == "DEBUG"

    def test_pipeline_command_from_env_json(self, monkeypatch):
        monkeypatch.setenv("PIPEWARDEN_PIPELINE_COMMAND", '["./run.sh", "--fast"]')
        assert WardenConfig().pipeline_command == ["./run.sh", "--fast"]

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("PIPEWARDEN_ENVIRONMENT=production\n")
        assert WardenConfig().environment == "production"

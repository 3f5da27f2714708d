"""Tests for the structlog setup."""

from __future__ import annotations

import json
import logging

import pytest

from kegbin.core.logging import configure_logging, default_log_dir, get_logger, sanitise_context


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "kegbin.log"
    configure_logging(level="INFO", log_file=path, force=True)
    yield path
    configure_logging(level="DEBUG", force=True)


class TestLogDir:
    """Where the rotating file lives."""

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KEGBIN_LOG_DIR", str(tmp_path / "logs"))
        assert default_log_dir() == tmp_path / "logs"

    def test_home_default(self, tmp_path, monkeypatch):
        monkeypatch.delenv("KEGBIN_LOG_DIR", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("USERPROFILE", str(tmp_path))
        assert default_log_dir() == tmp_path / ".kegbin" / "logs"


def test_sanitise_context_drops_none():
    event = {"event": "install_stage", "package": None, "stage": "downloading"}
    assert sanitise_context(None, "info", event) == {"event": "install_stage", "stage": "downloading"}


class TestFileOutput:
    """Events written to the log file."""

    def test_events_are_json_lines(self, log_file):
        get_logger("kegbin.tests").info("install_stage", stage="selecting_version", constraint=None)
        for handler in logging.root.handlers:
            handler.flush()

        record = json.loads(log_file.read_text().splitlines()[-1])

        assert record["event"] == "install_stage"
        assert record["stage"] == "selecting_version"
        assert record["level"] == "info"
        assert "constraint" not in record

    def test_level_filters_debug(self, log_file):
        get_logger("kegbin.tests").debug("noisy_event")
        for handler in logging.root.handlers:
            handler.flush()

        assert "noisy_event" not in log_file.read_text()

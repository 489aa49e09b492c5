# tests/test_logging.py
"""Tests for the logging setup and console helpers."""

import json
import logging

import pytest
import structlog

from fcs_monitor import logging as console
from fcs_monitor.config import Config
from fcs_monitor.metrics import MetricSnapshot


@pytest.fixture
def configured_logging(patched_config_paths):
    """Configure file logging under tmp_path, restoring defaults afterwards."""
    config = Config()
    console.configure(config)
    yield config
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


def read_log_lines(config: Config) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in config.log_path.read_text().splitlines() if line]


def test_configure_writes_json_lines(configured_logging):
    log = structlog.get_logger("test")
    log.info("refresh_completed", fcs_score=12.5, processors=8)

    entries = read_log_lines(configured_logging)

    assert entries[-1]["event"] == "refresh_completed"
    assert entries[-1]["fcs_score"] == 12.5
    assert entries[-1]["level"] == "info"
    assert entries[-1]["source"] == "daemon"
    assert "ts" in entries[-1]


def test_debug_events_are_filtered(configured_logging):
    log = structlog.get_logger("test")
    log.debug("topology_built", groups=3)
    log.warning("group_fetch_failed", group_id="pg-1", error="HTTP 404")

    events = [e["event"] for e in read_log_lines(configured_logging)]

    assert "topology_built" not in events
    assert "group_fetch_failed" in events


def test_configure_creates_state_dir(configured_logging):
    assert configured_logging.state_dir.is_dir()


def test_refresh_summary(capsys):
    console.refresh_summary(MetricSnapshot({"fcsScore": 93.0, "processorCount": 8.0}))
    out = capsys.readouterr().out
    assert "FCS" in out
    assert "93.0" in out


def test_refresh_summary_empty(capsys):
    console.refresh_summary(MetricSnapshot())
    assert "no metrics" in capsys.readouterr().out


def test_heartbeat_without_score(capsys):
    console.heartbeat(cycles=5, last_score=None, rss_mb=40.0)
    out = capsys.readouterr().out
    assert "5" in out
    assert "cycles" in out


def test_errors_go_to_stderr(capsys):
    console.refresh_failed("/flow/status: HTTP 503")
    captured = capsys.readouterr()
    assert "HTTP 503" in captured.err
    assert captured.out == ""

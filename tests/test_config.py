"""Tests for configuration system."""

import pytest

from fcs_monitor.config import (
    ApiConfig,
    Config,
    PollingConfig,
    ScoreWeights,
    TrendsConfig,
)


def test_api_config_defaults():
    """ApiConfig has correct defaults."""
    config = ApiConfig()
    assert config.base_url == "http://localhost:8080/nifi-api"
    assert config.token == ""
    assert config.verify_ssl is True
    assert config.timeout == 10.0


def test_polling_config_defaults():
    config = PollingConfig()
    assert config.interval == 60.0
    assert config.root_group_id == "root"


def test_trends_config_defaults():
    """TrendsConfig has correct defaults."""
    config = TrendsConfig()
    assert config.heap_window_size == 20
    assert config.cpu_window_size == 1440
    assert config.smoothing_alpha == 0.3
    assert config.spike_multiplier == 1.2
    assert config.spike_floor == 1.0
    assert config.cpu_source == "local"


def test_score_weights_default_to_one():
    weights = ScoreWeights()
    assert weights.processor_count == 1.0
    assert weights.heap_growth == 1.0


def test_config_paths():
    """Config provides correct paths."""
    config = Config()
    assert "fcs-monitor" in str(config.config_dir)
    assert config.config_path.name == "config.toml"
    assert config.log_path.name == "daemon.log"
    assert config.pid_path.name == "daemon.pid"


def test_load_missing_file_returns_defaults(tmp_path):
    """Config.load() on a missing file equals Config()."""
    assert Config.load(tmp_path / "missing.toml") == Config()


def test_save_and_load_roundtrip(tmp_path):
    config_path = tmp_path / "config.toml"
    config = Config()
    config.api.base_url = "https://flow.example:8443/nifi-api"
    config.polling.interval = 15.0
    config.trends.cpu_source = "diagnostics"
    config.weights.qbp_pct = 2.5
    config.save(config_path)

    loaded = Config.load(config_path)

    assert loaded == config


def test_load_partial_file_uses_defaults(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text('[polling]\nroot_group_id = "abc-123"\n\n[weights]\nmax_path_depth = 3.0\n')

    loaded = Config.load(config_path)

    assert loaded.polling.root_group_id == "abc-123"
    assert loaded.polling.interval == 60.0
    assert loaded.weights.max_path_depth == 3.0
    assert loaded.weights.avg_fan_out == 1.0
    assert loaded.trends == TrendsConfig()


@pytest.mark.parametrize(
    "toml, key",
    [
        ("[trends]\nheap_window_size = 1\n", "heap_window_size"),
        ("[trends]\ncpu_window_size = 0\n", "cpu_window_size"),
        ("[trends]\nsmoothing_alpha = 0.0\n", "smoothing_alpha"),
        ("[trends]\nsmoothing_alpha = 1.5\n", "smoothing_alpha"),
        ("[trends]\nspike_multiplier = 0\n", "spike_multiplier"),
        ('[trends]\ncpu_source = "gpu"\n', "cpu_source"),
        ("[polling]\ninterval = 0\n", "interval"),
        ("[weights]\nqbp_pct = -1.0\n", "qbp_pct"),
        ("[api]\ntimeout = -5\n", "timeout"),
        ('[polling]\ninterval = "soon"\n', "polling.interval"),
        ('[trends]\nheap_window_size = "big"\n', "trends.heap_window_size"),
        ('[weights]\nheap_growth = "high"\n', "weights.heap_growth"),
        ('[system]\nlog_backup_count = "three"\n', "system.log_backup_count"),
    ],
)
def test_invalid_values_rejected(tmp_path, toml, key):
    config_path = tmp_path / "config.toml"
    config_path.write_text(toml)

    with pytest.raises(ValueError, match=key):
        Config.load(config_path)


def test_unparseable_file(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("[api\nbase_url = ")

    with pytest.raises(ValueError, match="Failed to parse"):
        Config.load(config_path)


def test_quoted_numbers_are_coerced(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text('[polling]\ninterval = "30"\nheartbeat_cycles = "5"\n')

    loaded = Config.load(config_path)

    assert loaded.polling.interval == 30.0
    assert loaded.polling.heartbeat_cycles == 5

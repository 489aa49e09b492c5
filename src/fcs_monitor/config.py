"""Configuration system for fcs-monitor."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

VALID_CPU_SOURCES = ("local", "diagnostics")


@dataclass
class ApiConfig:
    """Flow engine REST API connection settings."""

    base_url: str = "http://localhost:8080/nifi-api"
    token: str = ""  # Pre-issued bearer token, empty for none
    verify_ssl: bool = True
    timeout: float = 10.0  # Seconds per request


@dataclass
class PollingConfig:
    """Refresh cadence configuration."""

    interval: float = 60.0  # Seconds between refresh cycles
    root_group_id: str = "root"  # Crawl root; "root" is resolved by the API
    heartbeat_cycles: int = 10  # Log heartbeat every N cycles


@dataclass
class TrendsConfig:
    """Streaming estimator configuration.

    The CPU window at 1440 samples covers about a day at one-minute polling.
    """

    heap_window_size: int = 20
    cpu_window_size: int = 1440
    smoothing_alpha: float = 0.3  # Weight of the newest heap slope
    spike_multiplier: float = 1.2  # Threshold = window average * multiplier
    spike_floor: float = 1.0  # Threshold never drops below this CPU %
    regression_epsilon: float = 1e-12  # Below this denominator, use endpoint delta
    cpu_source: str = "local"  # "local" (host CPU) or "diagnostics" (engine load average)


@dataclass
class ScoreWeights:
    """Weights for each term of the flow complexity score.

    Higher weight = more impact on score.
    """

    processor_count: float = 1.0
    max_path_depth: float = 1.0
    avg_fan_out: float = 1.0
    active_threads: float = 1.0
    scripted_pct: float = 1.0
    qbp_pct: float = 1.0
    heap_growth: float = 1.0


@dataclass
class SystemConfig:
    """Daemon housekeeping configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    api: ApiConfig = field(default_factory=ApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    trends: TrendsConfig = field(default_factory=TrendsConfig)
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "fcs-monitor"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "fcs-monitor"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (PID).

        Stored in /tmp/ so it's cleared on reboot, avoiding stale file issues.
        """
        return Path("/tmp/fcs-monitor")

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["api", "polling", "trends", "weights", "system"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.

        Raises:
            ValueError: If the file cannot be parsed or a value is out of range.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            api=_load_api_config(data.get("api", {})),
            polling=_load_polling_config(data.get("polling", {})),
            trends=_load_trends_config(data.get("trends", {})),
            weights=_load_score_weights(data.get("weights", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _number(data: dict, key: str, default: float, section: str, kind: type = float) -> float:
    """Read a numeric value, raising ValueError for anything that isn't one."""
    value = data.get(key, default)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"{section}.{key} must be a number, got {value!r}") from None


def _load_api_config(data: dict) -> ApiConfig:
    """Load API config from TOML data."""
    d = ApiConfig()
    timeout = _number(data, "timeout", d.timeout, "api")
    if timeout <= 0:
        raise ValueError(f"api.timeout must be > 0, got {timeout}")
    return ApiConfig(
        base_url=str(data.get("base_url", d.base_url)),
        token=str(data.get("token", d.token)),
        verify_ssl=bool(data.get("verify_ssl", d.verify_ssl)),
        timeout=timeout,
    )


def _load_polling_config(data: dict) -> PollingConfig:
    """Load polling config from TOML data."""
    d = PollingConfig()
    interval = _number(data, "interval", d.interval, "polling")
    heartbeat_cycles = _number(data, "heartbeat_cycles", d.heartbeat_cycles, "polling", int)

    if interval <= 0:
        raise ValueError(f"polling.interval must be > 0, got {interval}")
    if heartbeat_cycles < 1:
        raise ValueError(f"polling.heartbeat_cycles must be >= 1, got {heartbeat_cycles}")

    return PollingConfig(
        interval=interval,
        root_group_id=str(data.get("root_group_id", d.root_group_id)),
        heartbeat_cycles=heartbeat_cycles,
    )


def _load_trends_config(data: dict) -> TrendsConfig:
    """Load trends config from TOML data, using dataclass defaults for missing fields."""
    defaults = TrendsConfig()

    heap_window_size = _number(data, "heap_window_size", defaults.heap_window_size, "trends", int)
    cpu_window_size = _number(data, "cpu_window_size", defaults.cpu_window_size, "trends", int)
    smoothing_alpha = _number(data, "smoothing_alpha", defaults.smoothing_alpha, "trends")
    spike_multiplier = _number(data, "spike_multiplier", defaults.spike_multiplier, "trends")
    spike_floor = _number(data, "spike_floor", defaults.spike_floor, "trends")
    regression_epsilon = _number(data, "regression_epsilon", defaults.regression_epsilon, "trends")
    cpu_source = data.get("cpu_source", defaults.cpu_source)

    # Regression needs two points
    if heap_window_size < 2:
        raise ValueError(f"trends.heap_window_size must be >= 2, got {heap_window_size}")
    if cpu_window_size < 1:
        raise ValueError(f"trends.cpu_window_size must be >= 1, got {cpu_window_size}")
    if not 0 < smoothing_alpha <= 1:
        raise ValueError(f"trends.smoothing_alpha must be in (0, 1], got {smoothing_alpha}")
    if spike_multiplier <= 0:
        raise ValueError(f"trends.spike_multiplier must be > 0, got {spike_multiplier}")
    if spike_floor < 0:
        raise ValueError(f"trends.spike_floor must be >= 0, got {spike_floor}")
    if regression_epsilon < 0:
        raise ValueError(f"trends.regression_epsilon must be >= 0, got {regression_epsilon}")
    if cpu_source not in VALID_CPU_SOURCES:
        raise ValueError(
            f"Invalid trends.cpu_source: {cpu_source!r}. Must be one of {VALID_CPU_SOURCES}"
        )

    return TrendsConfig(
        heap_window_size=heap_window_size,
        cpu_window_size=cpu_window_size,
        smoothing_alpha=smoothing_alpha,
        spike_multiplier=spike_multiplier,
        spike_floor=spike_floor,
        regression_epsilon=regression_epsilon,
        cpu_source=str(cpu_source),
    )


def _load_score_weights(data: dict) -> ScoreWeights:
    """Load score weights from TOML data. Negative weights are rejected."""
    values = {}
    for f in fields(ScoreWeights):
        value = _number(data, f.name, f.default, "weights")
        if value < 0:
            raise ValueError(f"weights.{f.name} must be >= 0, got {value}")
        values[f.name] = value
    return ScoreWeights(**values)


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=_number(data, "log_max_bytes", d.log_max_bytes, "system", int),
        log_backup_count=_number(data, "log_backup_count", d.log_backup_count, "system", int),
    )

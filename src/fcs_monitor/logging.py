"""Console and file logging for fcs-monitor.

Two independent outputs:

- Rich console lines for people watching the daemon or running the CLI
  (`info`/`warn`/`error` plus refresh, spike and PID-file helpers)
- structlog JSON Lines in the rotating daemon log, set up by `configure`
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from fcs_monitor.config import Config
    from fcs_monitor.metrics import MetricSnapshot

_console = Console(highlight=False)
_err_console = Console(stderr=True, highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    HEARTBEAT = "[magenta]♡[/]"
    SPIKE = "[bright_red]▲[/]"
    RECOVERED = "[bright_green]▼[/]"
    SIGNAL = "⚡"
    REFRESH = "[cyan]↻[/]"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a timestamped console line. Errors go to stderr.

    Args:
        level: "info", "warn" or "error"
        msg: Message to print (can include Rich markup)
        icon: Optional Icon shown after the level tag
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    console = _err_console if level == "error" else _console
    console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Info line on stdout."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Warning line on stdout."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Error line on stderr."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def daemon_started() -> None:
    """Log daemon startup complete."""
    info("Daemon started", Icon.OK)


def daemon_stopping() -> None:
    info("Daemon stopping...", Icon.WAIT)


def daemon_stopped() -> None:
    info("Daemon stopped", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def config_summary(base_url: str, root_group_id: str, interval: float) -> None:
    """Log the effective polling target."""
    info(
        f"Polling [cyan]{base_url}[/] group [cyan]{root_group_id}[/] "
        f"[dim]every {interval:g}s[/]"
    )


def refresh_summary(snapshot: MetricSnapshot) -> None:
    """Log the headline numbers of a completed refresh."""
    if snapshot.is_empty:
        warn("Refresh produced no metrics [dim](empty topology)[/]")
        return
    info(
        f"FCS [bold]{snapshot.get('fcsScore', 0.0):.1f}[/] "
        f"[dim]({int(snapshot.get('processorCount', 0))} processors, "
        f"depth {int(snapshot.get('maxPathDepth', 0))}, "
        f"qbp {snapshot.get('qbpPct', 0.0):.1f}%)[/]",
        Icon.REFRESH,
    )


def refresh_skipped() -> None:
    """Log a refresh skipped because another is still running."""
    warn("Refresh skipped [dim](previous refresh still running)[/]", Icon.WAIT)


def refresh_failed(error_msg: str) -> None:
    """Log refresh cycle failed."""
    error(f"Refresh failed: {error_msg}", Icon.FAIL)


def cpu_spike_started(sample: float, threshold: float) -> None:
    info(f"CPU spike [bright_red]{sample:.1f}%[/] [dim]> {threshold:.1f}%[/]", Icon.SPIKE)


def cpu_spike_recovered(recovery_seconds: float) -> None:
    info(f"CPU recovered [dim]after {recovery_seconds:.1f}s[/]", Icon.RECOVERED)


def heartbeat(cycles: int, last_score: float | None, rss_mb: float) -> None:
    """Log periodic heartbeat stats."""
    score = "-" if last_score is None else f"{last_score:.1f}"
    info(
        f"[cyan]{cycles}[/] cycles, last FCS [cyan]{score}[/] [dim]{round(rss_mb, 1)}MB RSS[/]",
        Icon.HEARTBEAT,
    )


def main_loop_cancelled() -> None:
    info("Main loop cancelled")


def already_running(pid: int | None = None) -> None:
    """Log daemon already running error."""
    if pid:
        error(f"Another daemon already running [dim](PID {pid})[/]", Icon.FAIL)
    else:
        error("Another daemon already running", Icon.FAIL)


def pid_file_invalid() -> None:
    warn("PID file invalid")


def stale_pid_file(pid: int, actual_process: str) -> None:
    """Log stale PID file (different process)."""
    info(f"[dim]Stale PID file, PID {pid} is {actual_process}[/]")


def stale_pid_not_found(pid: int) -> None:
    """Log stale PID file (process not found)."""
    info(f"[dim]Stale PID file, PID {pid} not found[/]")


def pid_verify_failed(pid: int) -> None:
    """Log PID verification failed (access denied)."""
    warn(f"Cannot verify PID {pid}, assuming it is running")


def config_created(path: str) -> None:
    info(f"Created config at [cyan]{path}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Configure structlog to write JSON Lines to the rotating daemon log.

    Human-readable console output goes through the Rich helpers above.

    Args:
        config: Application config with paths
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("stdlib"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("daemon"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

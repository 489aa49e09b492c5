"""Refresh cycle and background polling daemon for fcs-monitor."""

import asyncio
import os
import resource
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import psutil
import structlog

from fcs_monitor import logging as console
from fcs_monitor.client import Fetch, FlowApiClient
from fcs_monitor.config import Config
from fcs_monitor.graph import GraphBuilder
from fcs_monitor.metrics import FCS_SCORE, MetricsEngine, MetricSnapshot
from fcs_monitor.score import ScoreAggregator
from fcs_monitor.trends import TrendEstimator

log = structlog.get_logger()

SnapshotConsumer = Callable[[MetricSnapshot], None]
CpuSampler = Callable[[], float | None]


class Refresher:
    """Runs one crawl -> metrics -> trends -> score cycle at a time.

    A refresh requested while another is in progress is skipped and returns
    None. The TrendEstimator is the only state carried between cycles.
    """

    def __init__(
        self,
        config: Config,
        client: Fetch,
        on_snapshot: SnapshotConsumer | None = None,
        cpu_sampler: CpuSampler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.root_group_id = config.polling.root_group_id
        self.builder = GraphBuilder(client)
        self.engine = MetricsEngine(client, self.root_group_id, self.builder)
        self.trends = TrendEstimator(config.trends)
        self.scorer = ScoreAggregator(config.weights)
        self.on_snapshot = on_snapshot
        self._cpu_sampler = cpu_sampler
        self._clock = clock
        self._lock = threading.Lock()

        if cpu_sampler is None and config.trends.cpu_source == "local":
            # First call primes psutil's counters and always returns 0.0
            psutil.cpu_percent(interval=None)

    def refresh(self) -> MetricSnapshot | None:
        """Run one refresh cycle and hand the snapshot to the consumer.

        Raises:
            RootGroupUnavailable: If the crawl root cannot be fetched.
        """
        if not self._lock.acquire(blocking=False):
            log.warning("refresh_skipped", reason="refresh already running")
            return None
        try:
            snapshot = self._refresh()
        finally:
            self._lock.release()

        if self.on_snapshot is not None:
            self.on_snapshot(snapshot)
        return snapshot

    def _refresh(self) -> MetricSnapshot:
        started = time.monotonic()
        topology = self.builder.build_topology(self.root_group_id)
        snapshot = self.engine.compute_metrics(topology.processors, topology.groups, topology.ports)
        if snapshot.is_empty:
            return snapshot

        now = self._clock()
        diagnostics = self.engine.read_diagnostics()
        heap = self.engine.read_heap(diagnostics) if diagnostics is not None else None
        cpu = self._sample_cpu(diagnostics)

        snapshot = self.trends.update(snapshot, now, heap, cpu)
        snapshot = self.scorer.apply(snapshot)

        log.info(
            "refresh_completed",
            processors=int(snapshot.get("processorCount", 0)),
            groups=len(topology.groups),
            fcs_score=round(snapshot[FCS_SCORE], 2),
            duration_ms=round((time.monotonic() - started) * 1000),
        )
        return snapshot

    def _sample_cpu(self, diagnostics: dict | None) -> float | None:
        if self._cpu_sampler is not None:
            return self._cpu_sampler()
        if self.config.trends.cpu_source == "diagnostics":
            if diagnostics is None:
                return None
            return self.engine.read_processor_load(diagnostics)
        return psutil.cpu_percent(interval=None)


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    cycle_count: int = 0
    failed_count: int = 0
    last_refresh_time: datetime | None = None
    last_score: float | None = None

    def update_refresh(self, snapshot: MetricSnapshot) -> None:
        """Update state after a completed refresh."""
        self.cycle_count += 1
        self.last_refresh_time = datetime.now()
        if not snapshot.is_empty:
            self.last_score = snapshot.get(FCS_SCORE)


class Daemon:
    """Polls the flow engine on a fixed interval until shut down."""

    def __init__(
        self,
        config: Config,
        refresher: Refresher | None = None,
        on_snapshot: SnapshotConsumer | None = None,
    ):
        self.config = config
        self.state = DaemonState()
        self._client: FlowApiClient | None = None
        if refresher is None:
            self._client = FlowApiClient(config.api)
            refresher = Refresher(config, self._client, on_snapshot=on_snapshot)
        self.refresher = refresher
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the daemon and run until shutdown."""
        from importlib.metadata import version

        log.info("daemon_starting", version=version("fcs-monitor"))
        log.info(
            "daemon_config",
            base_url=self.config.api.base_url,
            root_group_id=self.config.polling.root_group_id,
            interval=self.config.polling.interval,
            cpu_source=self.config.trends.cpu_source,
        )
        console.config_summary(
            self.config.api.base_url,
            self.config.polling.root_group_id,
            self.config.polling.interval,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        if self._check_already_running():
            log.error("daemon_already_running")
            raise RuntimeError("Daemon is already running")

        self._write_pid_file()

        self.state.running = True
        log.info("daemon_started")
        console.daemon_started()

        await self._main_loop()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        log.info("daemon_stopping")
        console.daemon_stopping()
        self.state.running = False

        if self._client is not None:
            self._client.close()
            self._client = None

        self._remove_pid_file()

        log.info("daemon_stopped")
        console.daemon_stopped()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    def _write_pid_file(self) -> None:
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        if self.config.pid_path.exists():
            self.config.pid_path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if daemon is already running.

        Verifies not just that a process with the PID exists, but that it's
        actually the fcs-monitor daemon, so a reused PID is not mistaken for it.
        """
        if not self.config.pid_path.exists():
            return False

        try:
            pid = int(self.config.pid_path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            console.pid_file_invalid()
            self._remove_pid_file()
            return False

        try:
            proc = psutil.Process(pid)
            cmdline = proc.cmdline()

            cmdline_str = " ".join(cmdline).lower()
            if "fcs-monitor" in cmdline_str or "fcs_monitor" in cmdline_str:
                log.info(
                    "daemon_already_running_verified",
                    pid=pid,
                    cmdline=" ".join(cmdline[:3]),
                )
                console.already_running(pid)
                return True
            log.warning(
                "pid_file_stale",
                reason="different process",
                pid=pid,
                actual_process=proc.name(),
            )
            console.stale_pid_file(pid, proc.name())
            self._remove_pid_file()
            return False

        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
            console.stale_pid_not_found(pid)
            self._remove_pid_file()
            return False
        except psutil.AccessDenied:
            # Can't inspect process - assume it's running
            log.warning("pid_check_access_denied", pid=pid)
            console.pid_verify_failed(pid)
            return True

    async def _main_loop(self) -> None:
        """Run refresh cycles at the configured interval.

        Each refresh runs in a worker thread so signal handling stays responsive.
        A failed cycle is logged and the loop carries on at the next tick.
        """
        interval = self.config.polling.interval
        heartbeat_cycles = self.config.polling.heartbeat_cycles
        heartbeat_count = 0

        while not self._shutdown_event.is_set():
            iteration_start = asyncio.get_running_loop().time()
            try:
                snapshot = await asyncio.to_thread(self.refresher.refresh)
                if snapshot is None:
                    console.refresh_skipped()
                else:
                    self.state.update_refresh(snapshot)
                    self._report_spike()
                    console.refresh_summary(snapshot)

                heartbeat_count += 1
                if heartbeat_count >= heartbeat_cycles:
                    rss_mb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024
                    log.info(
                        "daemon_heartbeat",
                        cycles=self.state.cycle_count,
                        failed=self.state.failed_count,
                        last_score=self.state.last_score,
                        rss_mb=round(rss_mb, 1),
                    )
                    console.heartbeat(self.state.cycle_count, self.state.last_score, rss_mb)
                    heartbeat_count = 0

            except asyncio.CancelledError:
                log.info("main_loop_cancelled")
                console.main_loop_cancelled()
                break
            except Exception as e:
                self.state.failed_count += 1
                log.error("refresh_failed", error=str(e))
                console.refresh_failed(str(e))

            elapsed = asyncio.get_running_loop().time() - iteration_start
            sleep_time = interval - elapsed
            if sleep_time > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=sleep_time)
                    break
                except asyncio.TimeoutError:
                    pass

    def _report_spike(self) -> None:
        reading = self.refresher.trends.last_spike
        if reading is None or reading.transition is None:
            return
        if reading.transition == "spike_started":
            console.cpu_spike_started(reading.sample, reading.threshold)
        else:
            console.cpu_spike_recovered(reading.recovery_seconds)


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until shutdown.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()

    console.configure(config)

    daemon = Daemon(config)

    try:
        await daemon.start()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()

"""Derived scalar metrics over the crawled topology.

MetricsEngine computes the fixed set of flow-complexity metrics from a
ProcessorGraph / ProcessGroupTree pair, plus the two live readings that need
their own API calls: connection backpressure and JVM heap.
"""

from __future__ import annotations

import math
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import structlog

from fcs_monitor.client import Fetch, FetchError
from fcs_monitor.graph import GraphBuilder, PortCounts, ProcessGroupTree, ProcessorGraph
from fcs_monitor.payload import as_number, dig, entries

log = structlog.get_logger()

# Snapshot keys
PROCESSOR_COUNT = "processorCount"
PROCESSOR_COUNT_FINAL = "processorCountFinal"
MAX_PATH_DEPTH = "maxPathDepth"
AVG_FAN_OUT = "avgFanOut"
AVG_F = "avgF"
IPD = "ipd"
ACTIVE_THREADS = "activeThreads"
SCRIPTED_PCT = "scriptedPct"
QBP_PCT = "qbpPct"
INPUT_PORT_COUNT = "inputPortCount"
OUTPUT_PORT_COUNT = "outputPortCount"
HEAP_USED_MB = "heapUsedMb"
HEAP_MAX_MB = "heapMaxMb"
HEAP_UTILIZATION_PCT = "heapUtilizationPct"
HEAP_GROWTH_MB_PER_MIN = "heapGrowthMbPerMin"
WINDOW_AVG_CPU_USAGE = "windowAvgCpuUsage"
INSTANTANEOUS_CPU_USAGE = "instantaneousCpuUsage"
CPU_SPIKE_THRESHOLD = "cpuSpikeThreshold"
CPU_SPIKING = "cpuSpiking"
SPIKE_RECOVERY_TIME_MS = "spikeRecoveryTimeMs"
SPIKE_RECOVERY_TIME_SEC = "spikeRecoveryTimeSec"
FCS_SCORE = "fcsScore"

SCRIPTED_TYPE_MARKERS = ("executescript", "script", "invokescript", "scripted")
EXPRESSION_MARKERS = ("${", "#{")

FLOW_STATUS_ENDPOINT = "/flow/status"
SYSTEM_DIAGNOSTICS_ENDPOINT = "/system-diagnostics"

# A node with more than this many edges counts as an integration point
INTEGRATION_POINT_DEGREE = 2


class MetricSnapshot(Mapping[str, float]):
    """Immutable metric name -> value mapping with its capture time.

    An empty snapshot means "nothing to report this cycle".
    """

    __slots__ = ("_values", "captured_at")

    def __init__(self, values: Mapping[str, float] | None = None, captured_at: float | None = None):
        self._values = MappingProxyType(dict(values or {}))
        self.captured_at = time.time() if captured_at is None else captured_at

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"MetricSnapshot({dict(self._values)!r}, captured_at={self.captured_at!r})"

    @property
    def is_empty(self) -> bool:
        return not self._values

    def merged(self, extra: Mapping[str, float]) -> MetricSnapshot:
        """Return a new snapshot with `extra` added, keeping captured_at."""
        values = dict(self._values)
        values.update(extra)
        return MetricSnapshot(values, captured_at=self.captured_at)

    def to_dict(self) -> dict[str, Any]:
        return {"captured_at": self.captured_at, "metrics": dict(self._values)}


@dataclass(frozen=True)
class HeapReading:
    """JVM heap usage from system diagnostics, in bytes."""

    used_bytes: float
    max_bytes: float


def is_scripted_type(type_: str) -> bool:
    lowered = type_.lower()
    return any(marker in lowered for marker in SCRIPTED_TYPE_MARKERS)


def contains_expression(name: str) -> bool:
    """True if the name embeds an expression-language or parameter reference."""
    return any(marker in name for marker in EXPRESSION_MARKERS)


def max_path_depth(tree: ProcessGroupTree) -> int:
    """Longest parent->child chain (in edges) in the group tree.

    Each top-level call gets a fresh on-stack set; depths are memoised across
    calls. A group already on the stack contributes 0, so cycles terminate.
    """
    memo: dict[str, int] = {}
    best = 0
    for group_id in tree.nodes:
        best = max(best, _group_depth(group_id, tree, set(), memo))
    return best


def _group_depth(
    group_id: str, tree: ProcessGroupTree, visiting: set[str], memo: dict[str, int]
) -> int:
    if group_id in memo:
        return memo[group_id]
    node = tree.nodes.get(group_id)
    if node is None:
        return 0
    if group_id in visiting:
        return 0

    visiting.add(group_id)
    best = 0
    for child_id in node.children:
        best = max(best, 1 + _group_depth(child_id, tree, visiting, memo))
    visiting.discard(group_id)

    memo[group_id] = best
    return best


class MetricsEngine:
    """Computes the fixed derived metrics for one cycle."""

    def __init__(
        self,
        client: Fetch,
        root_group_id: str = "root",
        builder: GraphBuilder | None = None,
    ) -> None:
        self._client = client
        self._root_group_id = root_group_id
        self._builder = builder or GraphBuilder(client)

    def compute_metrics(
        self,
        processor_graph: ProcessorGraph,
        group_tree: ProcessGroupTree,
        port_counts: PortCounts,
    ) -> MetricSnapshot:
        """Compute topology metrics plus live backpressure.

        Returns an empty snapshot when either graph is empty.
        """
        if processor_graph.is_empty or group_tree.is_empty:
            log.warning(
                "empty_topology",
                processors=len(processor_graph),
                groups=len(group_tree),
            )
            return MetricSnapshot()

        nodes = processor_graph.nodes.values()
        processor_count = len(processor_graph)
        avg_fan_out = sum(n.fan_out for n in nodes) / processor_count
        scripted = sum(
            1 for n in nodes if is_scripted_type(n.type) or contains_expression(n.name)
        )

        values = {
            PROCESSOR_COUNT: float(processor_count),
            MAX_PATH_DEPTH: float(max_path_depth(group_tree)),
            AVG_FAN_OUT: avg_fan_out,
            AVG_F: avg_fan_out,
            IPD: float(sum(1 for n in nodes if n.degree > INTEGRATION_POINT_DEGREE)),
            ACTIVE_THREADS: float(sum(n.active_thread_count for n in nodes)),
            SCRIPTED_PCT: 100.0 * scripted / max(processor_count, 1),
            QBP_PCT: self.backpressure_percent(),
            INPUT_PORT_COUNT: float(port_counts.input),
            OUTPUT_PORT_COUNT: float(port_counts.output),
            PROCESSOR_COUNT_FINAL: float(processor_count - port_counts.input - port_counts.output),
        }
        return MetricSnapshot(values)

    def backpressure_percent(self) -> float:
        """Percentage of connections whose queue has reached its object threshold.

        Uses the flow-wide connection status; falls back to the root group's
        connections when that is empty. Any fetch failure yields 0.0.
        """
        try:
            connections = entries(self._client.fetch(FLOW_STATUS_ENDPOINT), "connectionStatus")
            if not connections:
                path = f"/process-groups/{self._root_group_id}/connections"
                connections = entries(self._client.fetch(path), "connections")
        except FetchError as e:
            log.warning("backpressure_fetch_failed", path=e.path, error=e.reason)
            return 0.0

        if not connections:
            return 0.0

        over = 0
        for connection in connections:
            component = connection.get("component")
            if not isinstance(component, dict):
                component = connection
            queued = as_number(component.get("queuedCount"), 0.0)
            threshold = as_number(component.get("backPressureObjectThreshold"), math.inf)
            if threshold > 0 and queued >= threshold:
                over += 1
        return 100.0 * over / len(connections)

    def read_diagnostics(self) -> dict | None:
        """Fetch the aggregate system diagnostics snapshot, or None on failure."""
        try:
            doc = self._client.fetch(SYSTEM_DIAGNOSTICS_ENDPOINT)
        except FetchError as e:
            log.warning("diagnostics_fetch_failed", error=e.reason)
            return None
        snapshot = dig(doc, "systemDiagnostics", "aggregateSnapshot")
        if not isinstance(snapshot, dict):
            log.warning("diagnostics_missing_snapshot")
            return None
        return snapshot

    def read_heap(self, diagnostics: dict | None = None) -> HeapReading | None:
        """Read heap usage. Returns None when diagnostics are unavailable."""
        if diagnostics is None:
            diagnostics = self.read_diagnostics()
            if diagnostics is None:
                return None
        used = as_number(diagnostics.get("usedHeapBytes"), math.nan)
        maximum = as_number(diagnostics.get("maxHeapBytes"), math.nan)
        if math.isnan(used) or math.isnan(maximum):
            log.warning("heap_fields_missing")
            return None
        return HeapReading(used_bytes=used, max_bytes=maximum)

    def read_processor_load(self, diagnostics: dict | None = None) -> float | None:
        """Engine CPU load as a percentage: load average / processors * 100."""
        if diagnostics is None:
            diagnostics = self.read_diagnostics()
            if diagnostics is None:
                return None
        load = as_number(diagnostics.get("processorLoadAverage"), math.nan)
        processors = as_number(diagnostics.get("availableProcessors"), 0.0)
        if math.isnan(load) or load < 0 or processors <= 0:
            log.warning("processor_load_unavailable")
            return None
        return load / processors * 100.0

    def metrics_for_group(self, group_id: str) -> MetricSnapshot:
        """Compute topology metrics for an arbitrary process group.

        Raises:
            RootGroupUnavailable: If the group cannot be fetched.
        """
        topology = self._builder.build_topology(group_id)
        return self.compute_metrics(topology.processors, topology.groups, topology.ports)

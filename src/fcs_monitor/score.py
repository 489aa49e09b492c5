"""Flow complexity score: a weighted sum of selected metrics."""

from collections.abc import Mapping

from fcs_monitor.config import ScoreWeights
from fcs_monitor.metrics import (
    ACTIVE_THREADS,
    AVG_FAN_OUT,
    FCS_SCORE,
    HEAP_GROWTH_MB_PER_MIN,
    MAX_PATH_DEPTH,
    PROCESSOR_COUNT_FINAL,
    QBP_PCT,
    SCRIPTED_PCT,
    MetricSnapshot,
)

# metric key -> ScoreWeights field
SCORE_TERMS = {
    PROCESSOR_COUNT_FINAL: "processor_count",
    MAX_PATH_DEPTH: "max_path_depth",
    AVG_FAN_OUT: "avg_fan_out",
    ACTIVE_THREADS: "active_threads",
    SCRIPTED_PCT: "scripted_pct",
    QBP_PCT: "qbp_pct",
    HEAP_GROWTH_MB_PER_MIN: "heap_growth",
}


class ScoreAggregator:
    """Combines metrics into the flow complexity score."""

    def __init__(self, weights: ScoreWeights | None = None) -> None:
        self.weights = weights or ScoreWeights()

    def aggregate(self, metrics: Mapping[str, float]) -> float:
        """Weighted sum of the score terms. Missing terms count as 0."""
        return sum(
            getattr(self.weights, weight_name) * metrics.get(key, 0.0)
            for key, weight_name in SCORE_TERMS.items()
        )

    def apply(self, snapshot: MetricSnapshot) -> MetricSnapshot:
        """Return the snapshot with fcsScore added. Empty snapshots pass through."""
        if snapshot.is_empty:
            return snapshot
        return snapshot.merged({FCS_SCORE: self.aggregate(snapshot)})

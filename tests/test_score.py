"""Tests for the flow complexity score."""

import pytest

from fcs_monitor.config import ScoreWeights
from fcs_monitor.metrics import MetricSnapshot
from fcs_monitor.score import SCORE_TERMS, ScoreAggregator


def full_snapshot() -> MetricSnapshot:
    return MetricSnapshot(
        {
            "processorCountFinal": 10.0,
            "maxPathDepth": 2.0,
            "avgFanOut": 1.5,
            "activeThreads": 4.0,
            "scriptedPct": 25.0,
            "qbpPct": 50.0,
            "heapGrowthMbPerMin": 0.5,
            "processorCount": 12.0,
        }
    )


def test_default_weights_sum_terms():
    score = ScoreAggregator().aggregate(full_snapshot())
    assert score == pytest.approx(10 + 2 + 1.5 + 4 + 25 + 50 + 0.5)


def test_missing_terms_count_as_zero():
    score = ScoreAggregator().aggregate({"maxPathDepth": 3.0})
    assert score == 3.0


def test_custom_weights():
    weights = ScoreWeights(qbp_pct=2.0, scripted_pct=0.0)
    score = ScoreAggregator(weights).aggregate(full_snapshot())
    assert score == pytest.approx(10 + 2 + 1.5 + 4 + 0 + 100 + 0.5)


def test_untracked_metrics_do_not_contribute():
    assert "processorCount" not in SCORE_TERMS
    snapshot = MetricSnapshot({"processorCount": 100.0})
    assert ScoreAggregator().aggregate(snapshot) == 0.0


def test_apply_adds_score():
    result = ScoreAggregator().apply(full_snapshot())
    assert result["fcsScore"] == pytest.approx(93.0)
    assert result["processorCount"] == 12.0


def test_apply_passes_empty_snapshot_through():
    empty = MetricSnapshot()
    assert ScoreAggregator().apply(empty) is empty


def test_every_term_has_a_weight():
    weights = ScoreWeights()
    for weight_name in SCORE_TERMS.values():
        assert getattr(weights, weight_name) == 1.0

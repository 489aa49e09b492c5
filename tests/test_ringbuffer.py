# tests/test_ringbuffer.py
"""Tests for time-series window module."""

import pytest

from fcs_monitor.ringbuffer import Sample, TimeSeriesWindow, WindowContents


def test_window_starts_empty():
    window = TimeSeriesWindow(capacity=3)
    assert window.is_empty
    assert len(window) == 0
    assert window.capacity == 3
    assert window.mean() == 0.0


def test_window_evicts_oldest():
    """Pushing past capacity drops the oldest sample."""
    window = TimeSeriesWindow(capacity=3)
    for i in range(5):
        window.push(float(i), float(i * 10))

    assert len(window) == 3
    assert [s.timestamp for s in window.samples] == [2.0, 3.0, 4.0]


def test_window_mean():
    window = TimeSeriesWindow(capacity=10)
    for value in (1.0, 2.0, 6.0):
        window.push(0.0, value)
    assert window.mean() == pytest.approx(3.0)


def test_samples_returns_copy():
    window = TimeSeriesWindow(capacity=3)
    window.push(0.0, 1.0)
    samples = window.samples
    samples.append(Sample(1.0, 2.0))
    assert len(window) == 1


def test_freeze_is_immutable_snapshot():
    window = TimeSeriesWindow(capacity=3)
    window.push(0.0, 1.0)
    frozen = window.freeze()
    window.push(1.0, 2.0)

    assert isinstance(frozen, WindowContents)
    assert frozen.values == (1.0,)
    with pytest.raises(AttributeError):
        frozen.samples = ()  # type: ignore[misc]


def test_invalid_capacity():
    with pytest.raises(ValueError, match="capacity"):
        TimeSeriesWindow(capacity=0)

"""Streaming trend estimators.

TrendEstimator is the only component that keeps state across refresh cycles:

- HeapGrowthEstimator: least-squares slope of heap usage over a short window,
  exponentially smoothed, reported in MB/min
- SpikeDetector: adaptive CPU threshold (window average * multiplier, with a
  floor) and a NORMAL/SPIKING state machine that measures recovery time
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

import structlog

from fcs_monitor.config import TrendsConfig
from fcs_monitor.metrics import (
    CPU_SPIKE_THRESHOLD,
    CPU_SPIKING,
    HEAP_GROWTH_MB_PER_MIN,
    HEAP_MAX_MB,
    HEAP_USED_MB,
    HEAP_UTILIZATION_PCT,
    INSTANTANEOUS_CPU_USAGE,
    SPIKE_RECOVERY_TIME_MS,
    SPIKE_RECOVERY_TIME_SEC,
    WINDOW_AVG_CPU_USAGE,
    HeapReading,
    MetricSnapshot,
)
from fcs_monitor.ringbuffer import Sample, TimeSeriesWindow, WindowContents

log = structlog.get_logger()

BYTES_PER_MB = 1024 * 1024
# Below this many minutes between first and last sample, the delta fallback is skipped
MIN_SPAN_MINUTES = 1e-9


def least_squares_slope(samples: Sequence[Sample], epsilon: float = 1e-12) -> float | None:
    """Slope of value over time, in value units per minute.

    x is minutes since the earliest sample. When the regression denominator is
    below epsilon, falls back to (last - first) / span. Returns None when fewer
    than two samples are given or the span is too short for the fallback.
    """
    n = len(samples)
    if n < 2:
        return None

    t0 = samples[0].timestamp
    xs = [(s.timestamp - t0) / 60.0 for s in samples]
    ys = [s.value for s in samples]

    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_xx = sum(x * x for x in xs)

    denom = n * sum_xx - sum_x * sum_x
    if abs(denom) >= epsilon:
        return (n * sum_xy - sum_x * sum_y) / denom

    minutes = xs[-1]
    if minutes < MIN_SPAN_MINUTES:
        return None
    return (ys[-1] - ys[0]) / minutes


class HeapGrowthEstimator:
    """Smoothed heap growth rate in MB/min."""

    def __init__(self, window_size: int = 20, alpha: float = 0.3, epsilon: float = 1e-12) -> None:
        self.window = TimeSeriesWindow(window_size)
        self.alpha = alpha
        self.epsilon = epsilon
        self._smoothed: float | None = None

    @property
    def growth_mb_per_min(self) -> float:
        return self._smoothed if self._smoothed is not None else 0.0

    def update(self, timestamp: float, used_bytes: float) -> float:
        """Fold in a heap sample and return the smoothed growth rate.

        A degenerate window leaves the previous value in place.
        """
        self.window.push(timestamp, used_bytes)
        slope = least_squares_slope(self.window.samples, self.epsilon)
        if slope is None:
            return self.growth_mb_per_min

        growth = slope / BYTES_PER_MB
        if self._smoothed is None:
            self._smoothed = growth
        else:
            self._smoothed = self.alpha * growth + (1 - self.alpha) * self._smoothed
        return self._smoothed


class SpikeState(Enum):
    NORMAL = "normal"
    SPIKING = "spiking"


@dataclass(frozen=True)
class SpikeReading:
    """Result of one SpikeDetector update."""

    sample: float
    window_average: float
    threshold: float
    spiking: bool
    recovery_seconds: float
    transition: str | None = None  # "spike_started", "spike_recovered" or None


class SpikeDetector:
    """Adaptive CPU spike detector.

    NORMAL -> SPIKING when a sample exceeds the threshold (start recorded).
    SPIKING -> NORMAL when a sample is at or below it; recovery time is the
    time since the spike started. The threshold includes the current sample
    in the window average, so a short window dampens spikes: after a single
    sample of 10, a sample of 15 gives a threshold of 15 and does not spike.
    """

    def __init__(
        self, window_size: int = 1440, multiplier: float = 1.2, floor: float = 1.0
    ) -> None:
        self.window = TimeSeriesWindow(window_size)
        self.multiplier = multiplier
        self.floor = floor
        self.state = SpikeState.NORMAL
        self.spike_start: float | None = None
        self.recovery_seconds = 0.0

    @property
    def is_spiking(self) -> bool:
        return self.state is SpikeState.SPIKING

    def update(self, timestamp: float, sample: float) -> SpikeReading:
        self.window.push(timestamp, sample)
        average = self.window.mean()
        threshold = max(average * self.multiplier, self.floor)
        transition: str | None = None

        if self.state is SpikeState.NORMAL:
            if sample > threshold:
                self.state = SpikeState.SPIKING
                self.spike_start = timestamp
                self.recovery_seconds = 0.0
                transition = "spike_started"
        elif sample <= threshold:
            start = self.spike_start if self.spike_start is not None else timestamp
            self.recovery_seconds = max(0.0, timestamp - start)
            self.state = SpikeState.NORMAL
            self.spike_start = None
            transition = "spike_recovered"

        if transition:
            log.info(
                transition,
                sample=sample,
                threshold=threshold,
                recovery_seconds=self.recovery_seconds,
            )

        return SpikeReading(
            sample=sample,
            window_average=average,
            threshold=threshold,
            spiking=self.is_spiking,
            recovery_seconds=self.recovery_seconds,
            transition=transition,
        )


@dataclass(frozen=True)
class TrendWindows:
    """Immutable copies of both estimator windows."""

    heap: WindowContents
    cpu: WindowContents


class TrendEstimator:
    """Folds heap and CPU samples into trend metrics across cycles."""

    def __init__(self, config: TrendsConfig | None = None) -> None:
        config = config or TrendsConfig()
        self.heap = HeapGrowthEstimator(
            window_size=config.heap_window_size,
            alpha=config.smoothing_alpha,
            epsilon=config.regression_epsilon,
        )
        self.cpu = SpikeDetector(
            window_size=config.cpu_window_size,
            multiplier=config.spike_multiplier,
            floor=config.spike_floor,
        )
        self.last_spike: SpikeReading | None = None

    def record_heap(self, timestamp: float, reading: HeapReading) -> dict[str, float]:
        growth = self.heap.update(timestamp, reading.used_bytes)
        utilization = 0.0
        if reading.max_bytes > 0:
            utilization = reading.used_bytes / reading.max_bytes * 100.0
        return {
            HEAP_USED_MB: reading.used_bytes / BYTES_PER_MB,
            HEAP_MAX_MB: reading.max_bytes / BYTES_PER_MB,
            HEAP_UTILIZATION_PCT: utilization,
            HEAP_GROWTH_MB_PER_MIN: growth,
        }

    def record_cpu(self, timestamp: float, sample: float) -> dict[str, float]:
        reading = self.cpu.update(timestamp, sample)
        self.last_spike = reading
        return {
            INSTANTANEOUS_CPU_USAGE: reading.sample,
            WINDOW_AVG_CPU_USAGE: reading.window_average,
            CPU_SPIKE_THRESHOLD: reading.threshold,
            CPU_SPIKING: 1.0 if reading.spiking else 0.0,
            SPIKE_RECOVERY_TIME_SEC: reading.recovery_seconds,
            SPIKE_RECOVERY_TIME_MS: reading.recovery_seconds * 1000.0,
        }

    def update(
        self,
        snapshot: MetricSnapshot,
        timestamp: float,
        heap: HeapReading | None,
        cpu_sample: float | None,
    ) -> MetricSnapshot:
        """Add trend entries for whichever samples are available this cycle.

        Without a heap reading the last growth rate is still reported.
        """
        extra: dict[str, float] = {}
        self.last_spike = None
        if heap is not None:
            extra.update(self.record_heap(timestamp, heap))
        else:
            extra[HEAP_GROWTH_MB_PER_MIN] = self.heap.growth_mb_per_min
        if cpu_sample is not None:
            extra.update(self.record_cpu(timestamp, cpu_sample))
        return snapshot.merged(extra)

    def freeze(self) -> TrendWindows:
        return TrendWindows(heap=self.heap.window.freeze(), cpu=self.cpu.window.freeze())

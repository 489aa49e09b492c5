"""Bounded time-series windows for the trend estimators.

The heap window holds the last 20 samples for regression; the CPU window
holds about a day of one-minute samples for the adaptive spike threshold.
"""

from collections import deque
from dataclasses import dataclass

@dataclass(frozen=True)
class Sample:
    """Single (timestamp, value) sample. Timestamp is in seconds."""

    timestamp: float
    value: float

@dataclass(frozen=True)
class WindowContents:
    """Immutable snapshot of a window."""

    samples: tuple[Sample, ...]

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(s.value for s in self.samples)

class TimeSeriesWindow:
    """FIFO window of samples; the oldest is evicted once capacity is reached."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._samples: deque[Sample] = deque(maxlen=capacity)

    def __len__(self) -> int:
        """Return number of samples in the window."""
        return len(self._samples)

    @property
    def capacity(self) -> int:
        """Return maximum number of samples the window can hold."""
        return self._samples.maxlen or 0

    @property
    def samples(self) -> list[Sample]:
        """Read-only access to samples (returns a copy)."""
        return list(self._samples)

    def push(self, timestamp: float, value: float) -> None:
        """Add a sample to the window."""
        self._samples.append(Sample(timestamp=timestamp, value=value))

    def mean(self) -> float:
        """Mean of the values in the window, 0.0 when empty."""
        if not self._samples:
            return 0.0
        return sum(s.value for s in self._samples) / len(self._samples)

    def freeze(self) -> WindowContents:
        """Return immutable copy of window contents."""
        return WindowContents(samples=tuple(self._samples))

"""Duration aggregation helpers for benchmarks."""

from __future__ import annotations

from datetime import timedelta

_ZERO = timedelta(0)


def round_to_ms(duration: timedelta) -> int:
    """Return the duration in milliseconds, rounded half up."""
    micros = duration // timedelta(microseconds=1) + 500
    if micros >= 0:
        return micros // 1000
    return -((-micros) // 1000)


class ResAggregate:
    """A collection of duration samples with order statistics."""

    def __init__(self) -> None:
        self._samples: list[timedelta] = []
        self._sorted = True

    def __len__(self) -> int:
        return len(self._samples)

    def add(self, rtt: timedelta) -> None:
        """Add a sample."""
        self._samples.append(rtt)
        self._sorted = False

    def _sort(self) -> None:
        if not self._sorted:
            self._samples.sort()
            self._sorted = True

    def min(self) -> timedelta:
        """Smallest sample, or zero when there are none."""
        if not self._samples:
            return _ZERO
        self._sort()
        return self._samples[0]

    def max(self) -> timedelta:
        """Largest sample, or zero when there are none."""
        if not self._samples:
            return _ZERO
        self._sort()
        return self._samples[-1]

    def percentile(self, p: int) -> timedelta:
        """The p-th percentile, for 0 < p < 100."""
        if p <= 0:
            raise ValueError("p must be greater than 0")
        if p >= 100:
            raise ValueError("p must be less 100")
        if not self._samples:
            return _ZERO
        self._sort()
        return self._samples[p * len(self._samples) // 100]
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass
class TimingSample:
    """Pair of monotonic timestamps bracketing one measured block of work."""

    start_ns: int
    end_ns: int | None = None

    @property
    def elapsed_ms(self) -> float:
        if self.end_ns is None:
            raise RuntimeError("timing sample has not been finalised")
        return max(self.end_ns - self.start_ns, 0) / 1_000_000


class Stopwatch:
    """Context manager timing a group of calls.

    The sample is finalised on exit even when the block raises, so callers
    can still report how long a failed operation took.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or time.perf_counter_ns
        self.sample: TimingSample | None = None

    def __enter__(self) -> "Stopwatch":
        self.sample = TimingSample(start_ns=self._clock())
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self.sample is not None
        self.sample.end_ns = self._clock()

    @property
    def elapsed_ms(self) -> float:
        if self.sample is None:
            raise RuntimeError("stopwatch was never started")
        return self.sample.elapsed_ms


def measure(fn: Callable[..., T], *args: Any, **kwargs: Any) -> tuple[T, float]:
    """Invoke ``fn`` exactly once and return ``(result, elapsed_ms)``."""
    with Stopwatch() as watch:
        result = fn(*args, **kwargs)
    return result, watch.elapsed_ms


__all__ = ["TimingSample", "Stopwatch", "measure"]

"""Bounded sliding window of recent samples and the stats derived from it."""

from __future__ import annotations

from collections import deque
from threading import Lock
from typing import Deque, Iterable, Optional

from models.records import Sample
from services.aggregator import StatsCalculator, WindowStats
from services.errors import WindowSeedError


class SlidingWindowStore:
    """Owns the window and its stats; every mutation recomputes the stats."""

    def __init__(self, capacity: int = 100, calculator: Optional[StatsCalculator] = None) -> None:
        if capacity < 1:
            raise ValueError("Window capacity must be at least 1.")
        self.capacity = capacity
        self.calculator = calculator or StatsCalculator()
        self._samples: Deque[Sample] = deque()
        self._stats = self.calculator.summarize(())
        self._appended = 0
        self._lock = Lock()

    def seed(self, samples: Iterable[Sample]) -> None:
        """Replace the window with the newest ``capacity`` of ``samples``.

        Seeding is a cold-start operation. Once a live sample has been
        appended the window refuses to be replaced and raises
        :class:`WindowSeedError` instead.
        """
        items = list(samples)[-self.capacity:]
        with self._lock:
            if self._appended:
                raise WindowSeedError(
                    f"Cannot seed window after {self._appended} live samples were appended."
                )
            self._samples = deque(items)
            self._stats = self.calculator.summarize(self._samples)

    def append(self, sample: Sample) -> None:
        with self._lock:
            if len(self._samples) >= self.capacity:
                self._samples.popleft()
            self._samples.append(sample)
            self._appended += 1
            # Full rescan: an evicted sample may have been the extremum.
            self._stats = self.calculator.summarize(self._samples)

    def current_window(self) -> tuple[Sample, ...]:
        with self._lock:
            return tuple(self._samples)

    def current_stats(self) -> WindowStats:
        with self._lock:
            return self._stats

    def snapshot(self) -> tuple[tuple[Sample, ...], WindowStats]:
        """Read window and stats together so they always describe one state."""
        with self._lock:
            return tuple(self._samples), self._stats

    @property
    def appended_count(self) -> int:
        with self._lock:
            return self._appended

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

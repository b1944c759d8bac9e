"""Aggregation logic for sensor readings."""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from dataclasses import dataclass, field
from typing import Iterable, Literal, Union

from models.records import Sample

NO_DATA = "--"

Metric = Literal["temperature", "humidity"]
StatValue = Union[float, str]


@dataclass(frozen=True)
class MetricStats:
    """Rounded extrema and mean of one metric, or ``NO_DATA`` markers."""

    min: StatValue = NO_DATA
    max: StatValue = NO_DATA
    avg: StatValue = NO_DATA

    @property
    def has_data(self) -> bool:
        return self.avg != NO_DATA


@dataclass(frozen=True)
class WindowStats:
    """Computed statistics for the samples currently in the window."""

    temperature: MetricStats = field(default_factory=MetricStats)
    humidity: MetricStats = field(default_factory=MetricStats)


def round_one_decimal(value: float) -> float:
    """Round half away from zero, using the float's exact binary value."""
    return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class StatsCalculator:
    """Pure aggregation component that can be unit tested in isolation."""

    def calculate(self, samples: Iterable[Sample], metric: Metric) -> MetricStats:
        values = [value for value in (sample.metric(metric) for sample in samples) if value is not None]
        if not values:
            return MetricStats()

        # fsum is exact before rounding, so input order cannot change the mean
        mean = math.fsum(values) / len(values)
        return MetricStats(
            min=round_one_decimal(min(values)),
            max=round_one_decimal(max(values)),
            avg=round_one_decimal(mean),
        )

    def summarize(self, samples: Iterable[Sample]) -> WindowStats:
        items = list(samples)
        return WindowStats(
            temperature=self.calculate(items, "temperature"),
            humidity=self.calculate(items, "humidity"),
        )

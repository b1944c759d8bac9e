"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.records import ConnectionState, LightStatus, Sample
from services.aggregator import MetricStats, StatsCalculator, WindowStats
from services.history import HistoryResult
from services.publisher import Snapshot

HISTORY_ROWS = 20

StatValue = Union[float, Literal["--"]]


class ApiModel(BaseModel):
    """Base model that serializes field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SampleOut(ApiModel):
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    light_status: LightStatus = LightStatus.unknown
    light_value: float = 0.0
    captured_at: datetime
    display_time: str

    @classmethod
    def from_sample(cls, sample: Sample) -> "SampleOut":
        return cls(
            temperature=sample.temperature,
            humidity=sample.humidity,
            light_status=sample.light_status,
            light_value=sample.light_value,
            captured_at=sample.captured_at,
            display_time=sample.display_time,
        )


class MetricStatsOut(ApiModel):
    """Min/max/avg rounded to one decimal, ``"--"`` when there is no data."""

    min: StatValue = "--"
    max: StatValue = "--"
    avg: StatValue = "--"

    @classmethod
    def from_stats(cls, stats: MetricStats) -> "MetricStatsOut":
        return cls(min=stats.min, max=stats.max, avg=stats.avg)


class StatsOut(ApiModel):
    temperature: MetricStatsOut = Field(default_factory=MetricStatsOut)
    humidity: MetricStatsOut = Field(default_factory=MetricStatsOut)

    @classmethod
    def from_stats(cls, stats: WindowStats) -> "StatsOut":
        return cls(
            temperature=MetricStatsOut.from_stats(stats.temperature),
            humidity=MetricStatsOut.from_stats(stats.humidity),
        )


class SensorSnapshotResponse(ApiModel):
    """Current reading, chart series (oldest first), recent rows and stats."""

    current: Optional[SampleOut] = None
    chart_data: List[SampleOut] = Field(default_factory=list)
    history: List[SampleOut] = Field(
        default_factory=list, description="Most recent readings, newest first."
    )
    stats: StatsOut = Field(default_factory=StatsOut)
    connection_state: ConnectionState
    message_count: int = Field(..., ge=0)
    history_loaded: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "SensorSnapshotResponse":
        return cls(
            current=SampleOut.from_sample(snapshot.latest) if snapshot.latest else None,
            chart_data=_samples_out(snapshot.window),
            history=_samples_out(reversed(snapshot.window[-HISTORY_ROWS:])),
            stats=StatsOut.from_stats(snapshot.stats),
            connection_state=snapshot.connection_state,
            message_count=snapshot.message_count,
            history_loaded=snapshot.history_loaded,
        )

    @classmethod
    def from_history(
        cls,
        result: HistoryResult,
        live: Snapshot,
        calculator: Optional[StatsCalculator] = None,
    ) -> "SensorSnapshotResponse":
        calculator = calculator or StatsCalculator()
        latest = result.latest
        return cls(
            current=SampleOut.from_sample(latest) if latest else None,
            chart_data=_samples_out(result.chronological()),
            history=_samples_out(result.samples[:HISTORY_ROWS]),
            stats=StatsOut.from_stats(calculator.summarize(result.samples)),
            connection_state=live.connection_state,
            message_count=live.message_count,
            history_loaded=True,
        )


class HealthResponse(ApiModel):
    status: str = "ok"
    connection_state: ConnectionState
    window_size: int = Field(..., ge=0)
    detail: Optional[str] = None


def _samples_out(samples: Iterable[Sample]) -> List[SampleOut]:
    return [SampleOut.from_sample(sample) for sample in samples]

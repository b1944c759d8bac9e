"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class LightStatus(str, Enum):
    """Coarse light level reported by the sensor node."""

    bright = "bright"
    dark = "dark"
    unknown = "unknown"


class ConnectionState(str, Enum):
    """Lifecycle of the live telemetry subscription."""

    connecting = "connecting"
    online = "online"
    offline = "offline"


@dataclass(frozen=True, slots=True)
class Sample:
    """A single normalized telemetry reading."""

    temperature: Optional[float]
    humidity: Optional[float]
    light_status: LightStatus
    light_value: float
    captured_at: datetime
    display_time: str

    def metric(self, name: str) -> Optional[float]:
        if name == "temperature":
            return self.temperature
        if name == "humidity":
            return self.humidity
        raise ValueError(f"Unknown metric {name!r}")

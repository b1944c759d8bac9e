"""Exception types raised by the telemetry services."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for telemetry pipeline failures."""


class MalformedMessageError(TelemetryError):
    """An inbound payload or stored row could not be turned into a sample."""


class HistoryUnavailableError(TelemetryError):
    """The time-series store could not deliver the bootstrap history."""


class WindowSeedError(TelemetryError):
    """The window was seeded after live samples had already been appended."""

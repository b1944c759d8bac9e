"""Normalization of live MQTT payloads and stored rows into samples."""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.records import LightStatus, Sample
from services.errors import MalformedMessageError

logger = logging.getLogger(__name__)

# RFC 3339 timestamps from InfluxDB carry nanoseconds; datetime keeps micros.
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown display timezone %r, falling back to UTC", name)
        return timezone.utc


def parse_timestamp(value: str) -> datetime:
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    candidate = _FRACTION_RE.sub(r".\1", candidate)

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def format_display_time(moment: datetime, zone: tzinfo) -> str:
    """Render ``moment`` like ``18/10/2026, 2:05:07 pm`` in ``zone``."""
    local = moment.astimezone(zone)
    hour = local.hour % 12 or 12
    meridiem = "am" if local.hour < 12 else "pm"
    return f"{local:%d/%m/%Y}, {hour}:{local:%M:%S} {meridiem}"


def derive_light_status(explicit: Any, light_value: Optional[float]) -> LightStatus:
    if isinstance(explicit, str) and explicit.strip():
        try:
            return LightStatus(explicit.strip().lower())
        except ValueError:
            return LightStatus.unknown
    if light_value is None:
        return LightStatus.unknown
    return LightStatus.dark if light_value == 0 else LightStatus.bright


def _read_number(data: Mapping[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass; a true/false reading is not a measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedMessageError(f"{key} must be a number")
    number = float(value)
    if not math.isfinite(number):
        raise MalformedMessageError(f"{key} must be finite")
    return number


class SampleNormalizer:
    """Applies one set of rules to both live messages and stored history."""

    def __init__(
        self,
        display_timezone: str = "Asia/Kolkata",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.zone = resolve_timezone(display_timezone)
        self._clock = clock

    def from_payload(self, payload: bytes | str) -> Sample:
        """Decode a raw MQTT payload; missing or unparseable timestamps default to now."""
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedMessageError("payload is not valid UTF-8") from exc
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise MalformedMessageError(f"payload is not JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise MalformedMessageError("payload is not a JSON object")
        return self.from_mapping(data, time_key="timestamp", required_time=False)

    def from_row(self, row: Mapping[str, Any]) -> Sample:
        return self.from_mapping(row, time_key="_time", required_time=True)

    def from_mapping(
        self,
        data: Mapping[str, Any],
        time_key: str,
        required_time: bool,
    ) -> Sample:
        temperature = _read_number(data, "temperature")
        humidity = _read_number(data, "humidity")
        light_value = _read_number(data, "light_value")
        light_status = derive_light_status(data.get("light_status"), light_value)

        raw_time = data.get(time_key)
        if raw_time is None or raw_time == "":
            if required_time:
                raise MalformedMessageError(f"missing {time_key}")
            captured_at = self._clock()
        elif isinstance(raw_time, datetime):
            captured_at = raw_time if raw_time.tzinfo else raw_time.replace(tzinfo=timezone.utc)
        elif isinstance(raw_time, str):
            try:
                captured_at = parse_timestamp(raw_time)
            except ValueError as exc:
                if required_time:
                    raise MalformedMessageError(f"invalid {time_key}") from exc
                # live readings keep their values; only the time is replaced
                logger.warning(
                    "Unparseable %s %r, using receive time",
                    time_key,
                    raw_time,
                    extra={"reason": str(exc)},
                )
                captured_at = self._clock()
        else:
            raise MalformedMessageError(f"{time_key} must be a string")

        return Sample(
            temperature=temperature,
            humidity=humidity,
            light_status=light_status,
            light_value=light_value if light_value is not None else 0.0,
            captured_at=captured_at,
            display_time=format_display_time(captured_at, self.zone),
        )

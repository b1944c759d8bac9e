from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_TRANSPORT_ENV = "MQTT_TRANSPORT"
_MQTT_USERNAME_ENV = "MQTT_USERNAME"
_MQTT_PASSWORD_ENV = "MQTT_PASSWORD"
_MQTT_TOPIC_ENV = "MQTT_TOPIC"
_MQTT_CLIENT_ID_ENV = "MQTT_CLIENT_ID"
_INFLUX_URL_ENV = "INFLUX_URL"
_INFLUX_TOKEN_ENV = "INFLUX_TOKEN"
_INFLUX_ORG_ENV = "INFLUX_ORG"
_INFLUX_BUCKET_ENV = "INFLUX_BUCKET"
_INFLUX_MEASUREMENT_ENV = "INFLUX_MEASUREMENT"
_HISTORY_RANGE_ENV = "HISTORY_RANGE"
_HISTORY_LIMIT_ENV = "HISTORY_LIMIT"
_HISTORY_TIMEOUT_ENV = "HISTORY_TIMEOUT_SECONDS"
_WINDOW_CAPACITY_ENV = "WINDOW_CAPACITY"
_QUEUE_SIZE_ENV = "INGEST_QUEUE_SIZE"
_DISPLAY_TZ_ENV = "DISPLAY_TIMEZONE"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRANSPORTS = {"tcp", "websockets"}


@dataclass(frozen=True)
class Settings:
    mqtt_host: str
    mqtt_port: int
    mqtt_transport: str
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_topic: str
    mqtt_client_id: str
    influx_url: str
    influx_token: Optional[str]
    influx_org: Optional[str]
    influx_bucket: str
    influx_measurement: str
    history_range: str
    history_limit: int
    history_timeout: float
    window_capacity: int
    ingest_queue_size: int
    display_timezone: str
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_transport(default: str) -> str:
    candidate = _read_str_env(_MQTT_TRANSPORT_ENV, default).lower()
    return candidate if candidate in _TRANSPORTS else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "raspberrypi.local"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_transport=_read_transport("tcp"),
        mqtt_username=_read_optional_env(_MQTT_USERNAME_ENV),
        mqtt_password=_read_optional_env(_MQTT_PASSWORD_ENV),
        mqtt_topic=_read_str_env(_MQTT_TOPIC_ENV, "sensors/data"),
        mqtt_client_id=_read_str_env(_MQTT_CLIENT_ID_ENV, "telemetry-monitor"),
        influx_url=_read_str_env(_INFLUX_URL_ENV, "http://localhost:8086").rstrip("/"),
        influx_token=_read_optional_env(_INFLUX_TOKEN_ENV),
        influx_org=_read_optional_env(_INFLUX_ORG_ENV),
        influx_bucket=_read_str_env(_INFLUX_BUCKET_ENV, "sensors"),
        influx_measurement=_read_str_env(_INFLUX_MEASUREMENT_ENV, "environment"),
        history_range=_read_str_env(_HISTORY_RANGE_ENV, "-6h"),
        history_limit=_read_positive_int(_HISTORY_LIMIT_ENV, 500),
        history_timeout=_read_positive_float(_HISTORY_TIMEOUT_ENV, 10.0),
        window_capacity=_read_positive_int(_WINDOW_CAPACITY_ENV, 100),
        ingest_queue_size=_read_positive_int(_QUEUE_SIZE_ENV, 1000),
        display_timezone=_read_str_env(_DISPLAY_TZ_ENV, "Asia/Kolkata"),
        log_level=_read_log_level("INFO"),
    )

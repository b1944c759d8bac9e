"""Read-only adapter for the InfluxDB v2 HTTP query API."""

from __future__ import annotations

import csv
import io
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from services.errors import HistoryUnavailableError

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^-(\d+(ns|us|ms|mo|s|m|h|d|w|y))+$")
_NUMERIC_FIELDS = ("temperature", "humidity", "light_value")
_TEXT_FIELDS = ("_time", "light_status")

Row = Dict[str, Any]


def _flux_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_history_query(bucket: str, measurement: str, range_start: str, limit: int) -> str:
    """Flux query for the newest ``limit`` pivoted rows within ``range_start``."""
    if not _DURATION_RE.match(range_start):
        raise ValueError(f"Invalid relative range {range_start!r}; expected e.g. '-6h'.")
    if limit < 1:
        raise ValueError("Row limit must be positive.")
    return (
        f"from(bucket: {_flux_string(bucket)})\n"
        f"  |> range(start: {range_start})\n"
        f"  |> filter(fn: (r) => r._measurement == {_flux_string(measurement)})\n"
        '  |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")\n'
        '  |> sort(columns: ["_time"], desc: true)\n'
        f"  |> limit(n: {limit})\n"
    )


def parse_csv_response(text: str) -> List[Row]:
    """Parse an InfluxDB CSV result into rows keyed by column name.

    Results arrive as one or more tables separated by blank lines, each with
    its own header row. Annotation lines start with ``#``.
    """
    rows: List[Row] = []
    block: list[str] = []
    for line in text.splitlines() + [""]:
        if line.strip():
            if not line.startswith("#"):
                block.append(line)
            continue
        if block:
            rows.extend(_parse_table(block))
            block = []
    return rows


def _parse_table(lines: list[str]) -> List[Row]:
    reader = csv.DictReader(io.StringIO("\n".join(lines)))
    fieldnames = reader.fieldnames or []
    if "error" in fieldnames:
        messages = [row.get("error") or "unknown error" for row in reader]
        raise HistoryUnavailableError(f"InfluxDB query error: {'; '.join(messages) or 'unknown error'}")

    table: List[Row] = []
    for row in reader:
        converted: Row = {}
        for key in _TEXT_FIELDS:
            value = (row.get(key) or "").strip()
            if value:
                converted[key] = value
        for key in _NUMERIC_FIELDS:
            value = (row.get(key) or "").strip()
            if not value:
                continue
            try:
                converted[key] = float(value)
            except ValueError as exc:
                raise HistoryUnavailableError(f"invalid numeric value for {key}: {value!r}") from exc
        table.append(converted)
    return table


class InfluxQueryClient:
    """Minimal HTTP client for the time-series store."""

    def __init__(
        self,
        url: str,
        token: Optional[str],
        org: Optional[str],
        bucket: str,
        measurement: str = "environment",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.bucket = bucket
        self.measurement = measurement
        self.org = org
        headers = {"Accept": "application/csv"}
        if token:
            headers["Authorization"] = f"Token {token}"
        self._client = httpx.Client(
            base_url=url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def query_recent(self, range_start: str = "-6h", limit: int = 500) -> List[Row]:
        """Return up to ``limit`` rows, newest first."""
        flux = build_history_query(self.bucket, self.measurement, range_start, limit)
        params = {"org": self.org} if self.org else None
        body = {
            "query": flux,
            "type": "flux",
            "dialect": {"header": True, "delimiter": ",", "annotations": []},
        }
        try:
            response = self._client.post("/api/v2/query", params=params, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise HistoryUnavailableError(self._describe_error(exc)) from exc
        except httpx.HTTPError as exc:
            raise HistoryUnavailableError(f"InfluxDB request failed: {exc}") from exc

        rows = parse_csv_response(response.text)
        logger.debug("Fetched history rows", extra={"row_count": len(rows)})
        return rows

    @staticmethod
    def _describe_error(exc: httpx.HTTPStatusError) -> str:
        detail: str | None = None
        try:
            data = exc.response.json()
            if isinstance(data, dict):
                detail = data.get("message")
        except ValueError:
            detail = exc.response.text.strip()
        status_code = exc.response.status_code
        return f"InfluxDB returned {status_code}: {detail or 'no detail'}"

from __future__ import annotations

import json

import httpx
import pytest

from services.errors import HistoryUnavailableError
from storage.influx import InfluxQueryClient, build_history_query, parse_csv_response

_CSV_BODY = (
    ",result,table,_start,_stop,_time,_measurement,humidity,light_status,light_value,temperature\r\n"
    ",_result,0,2024-01-01T04:00:00Z,2024-01-01T10:00:00Z,2024-01-01T10:00:00.123456789Z,environment,55.5,bright,812,23.1\r\n"
    ",_result,0,2024-01-01T04:00:00Z,2024-01-01T10:00:00Z,2024-01-01T09:59:00Z,environment,,,0,22.8\r\n"
    "\r\n"
)


def _client(handler) -> InfluxQueryClient:
    return InfluxQueryClient(
        url="http://influx.local:8086",
        token="secret-token",
        org="home",
        bucket="sensors",
        transport=httpx.MockTransport(handler),
    )


def test_query_recent_sends_bounded_flux_query() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, text=_CSV_BODY)

    client = _client(handler)
    rows = client.query_recent(range_start="-6h", limit=500)
    client.close()

    request = captured[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v2/query"
    assert request.url.params["org"] == "home"
    assert request.headers["Authorization"] == "Token secret-token"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["Accept"] == "application/csv"
    body = json.loads(request.content)
    assert body["type"] == "flux"
    assert body["dialect"]["header"] is True
    assert 'from(bucket: "sensors")' in body["query"]
    assert "range(start: -6h)" in body["query"]
    assert 'r._measurement == "environment"' in body["query"]
    assert 'sort(columns: ["_time"], desc: true)' in body["query"]
    assert "limit(n: 500)" in body["query"]
    assert len(rows) == 2


def test_rows_are_typed_and_empty_cells_absent() -> None:
    rows = parse_csv_response(_CSV_BODY)

    assert rows[0] == {
        "_time": "2024-01-01T10:00:00.123456789Z",
        "light_status": "bright",
        "temperature": 23.1,
        "humidity": 55.5,
        "light_value": 812.0,
    }
    assert rows[1] == {"_time": "2024-01-01T09:59:00Z", "temperature": 22.8, "light_value": 0.0}


def test_multiple_tables_and_annotations_are_parsed() -> None:
    text = (
        "#datatype,string,long,dateTime:RFC3339,double\r\n"
        ",result,table,_time,temperature\r\n"
        ",_result,0,2024-01-01T10:00:00Z,20.5\r\n"
        "\r\n"
        ",result,table,_time,temperature,humidity\r\n"
        ",_result,1,2024-01-01T09:00:00Z,19.5,40\r\n"
    )

    rows = parse_csv_response(text)

    assert [row["temperature"] for row in rows] == [20.5, 19.5]
    assert rows[1]["humidity"] == 40.0


def test_error_table_raises() -> None:
    with pytest.raises(HistoryUnavailableError) as excinfo:
        parse_csv_response("error,reference\r\nbucket not found,\r\n")

    assert "bucket not found" in str(excinfo.value)


def test_invalid_number_raises() -> None:
    with pytest.raises(HistoryUnavailableError):
        parse_csv_response(",result,table,_time,temperature\r\n,_result,0,2024-01-01T10:00:00Z,warm\r\n")


def test_http_error_is_reported_with_detail() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"code": "unauthorized", "message": "unauthorized access"})

    client = _client(handler)

    with pytest.raises(HistoryUnavailableError) as excinfo:
        client.query_recent()

    assert "401" in str(excinfo.value)
    assert "unauthorized access" in str(excinfo.value)


def test_timeout_is_reported() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)

    with pytest.raises(HistoryUnavailableError) as excinfo:
        client.query_recent()

    assert "timed out" in str(excinfo.value)


@pytest.mark.parametrize("range_start", ["6h", "-6 hours", "now()"])
def test_invalid_range_is_rejected(range_start: str) -> None:
    with pytest.raises(ValueError):
        build_history_query("sensors", "environment", range_start, 500)


def test_identifiers_are_quoted() -> None:
    query = build_history_query('my"bucket', "environment", "-1h30m", 10)

    assert 'from(bucket: "my\\"bucket")' in query
    assert "range(start: -1h30m)" in query

from __future__ import annotations

import json
import threading
from typing import Any, Dict, List, Optional

from models.records import ConnectionState
from services.errors import HistoryUnavailableError
from services.history import HistoryLoader
from services.ingestor import MqttEndpoint, StreamIngestor
from services.monitor import TelemetryMonitor
from services.publisher import SnapshotPublisher
from services.window import SlidingWindowStore


class RecordingClient:
    def __init__(self, endpoint: MqttEndpoint) -> None:
        self.endpoint = endpoint
        self.on_message: Any = None
        self.disconnected = False

    def connect_async(self, host: str, port: int, keepalive: int = 60) -> None:
        pass

    def loop_start(self) -> None:
        pass

    def loop_stop(self) -> None:
        pass

    def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topic: str, qos: int = 0) -> tuple[int, int]:
        return 0, 1


class BlockingStore:
    """History store whose query only returns once the test releases it."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None) -> None:
        self.rows = rows or []
        self.error = error
        self.release = threading.Event()
        self.entered = threading.Event()
        self.closed = False

    def query_recent(self, range_start: str = "-6h", limit: int = 500) -> List[Dict[str, Any]]:
        self.entered.set()
        self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return list(self.rows)

    def close(self) -> None:
        self.closed = True


class _Message:
    def __init__(self, payload: bytes) -> None:
        self.topic = "sensors/data"
        self.payload = payload


def _build(store: BlockingStore) -> tuple[TelemetryMonitor, list[RecordingClient]]:
    window = SlidingWindowStore(capacity=10)
    publisher = SnapshotPublisher(window)
    clients: list[RecordingClient] = []

    def factory(endpoint: MqttEndpoint) -> RecordingClient:
        client = RecordingClient(endpoint)
        clients.append(client)
        return client

    ingestor = StreamIngestor(window=window, publisher=publisher, client_factory=factory)
    loader = HistoryLoader(store=store, window=window, publisher=publisher)
    monitor = TelemetryMonitor(
        window=window,
        publisher=publisher,
        ingestor=ingestor,
        loader=loader,
        store=store,
    )
    return monitor, clients


def _deliver(client: RecordingClient, **fields: Any) -> None:
    client.on_message(client, None, _Message(json.dumps(fields).encode("utf-8")))


def test_live_messages_are_applied_after_the_seed() -> None:
    store = BlockingStore(rows=[{"_time": "2024-01-01T10:00:00Z", "temperature": 19.0, "light_value": 0.0}])
    monitor, clients = _build(store)
    monitor.start()

    _deliver(clients[0], temperature=25.0, light_value=1)
    assert monitor.wait_until_ready(timeout=0.05) is False
    assert monitor.snapshot().window == ()

    store.release.set()
    assert monitor.wait_until_ready(timeout=5)
    monitor.ingestor._inbox.join()

    snapshot = monitor.snapshot()
    assert [sample.temperature for sample in snapshot.window] == [19.0, 25.0]
    assert snapshot.history_loaded is True
    assert snapshot.message_count == 1
    assert monitor.bootstrap_error is None
    monitor.shutdown()


def test_bootstrap_failure_falls_back_to_live_data() -> None:
    store = BlockingStore(error=HistoryUnavailableError("influx down"))
    store.release.set()
    monitor, clients = _build(store)

    monitor.start()
    assert monitor.wait_until_ready(timeout=5)
    _deliver(clients[0], temperature=21.0, light_value=1)
    monitor.ingestor._inbox.join()

    snapshot = monitor.snapshot()
    assert isinstance(monitor.bootstrap_error, HistoryUnavailableError)
    assert snapshot.history_loaded is False
    assert [sample.temperature for sample in snapshot.window] == [21.0]
    monitor.shutdown()


def test_shutdown_is_idempotent_and_releases_resources() -> None:
    store = BlockingStore()
    store.release.set()
    monitor, clients = _build(store)
    monitor.start()
    monitor.wait_until_ready(timeout=5)

    monitor.shutdown()
    monitor.shutdown()

    assert clients[0].disconnected is True
    assert store.closed is True
    assert monitor.ingestor.closed is True
    assert monitor.snapshot().connection_state is ConnectionState.offline


def test_shutdown_waits_for_running_bootstrap() -> None:
    store = BlockingStore(rows=[{"_time": "2024-01-01T10:00:00Z", "temperature": 19.0, "light_value": 0.0}])
    monitor, _ = _build(store)
    snapshots: list[Any] = []
    monitor.subscribe(snapshots.append)
    monitor.start()
    assert store.entered.wait(timeout=5)

    stopper = threading.Thread(target=monitor.shutdown)
    stopper.start()
    store.release.set()
    stopper.join(timeout=5)

    assert not stopper.is_alive()
    assert snapshots[-1].connection_state is ConnectionState.offline
    assert snapshots[-1].history_loaded is True
    assert [sample.temperature for sample in monitor.window.current_window()] == [19.0]


def test_unexpected_bootstrap_error_is_logged(caplog) -> None:
    store = BlockingStore(rows=[{"_time": "2024-01-01T10:00:00Z", "temperature": 19.0, "light_value": 0.0}])
    store.release.set()
    monitor, _ = _build(store)
    monitor.ingestor.process_payload(json.dumps({"temperature": 24.0, "light_value": 1}).encode("utf-8"))

    monitor.start()
    assert monitor.wait_until_ready(timeout=5)
    monitor.shutdown()

    records = [record for record in caplog.records if record.name == "services.monitor"]
    assert any(
        record.getMessage() == "Unexpected error during history bootstrap" and record.exc_info
        for record in records
    )
    assert monitor.bootstrap_error is None
    assert [sample.temperature for sample in monitor.window.current_window()] == [24.0]

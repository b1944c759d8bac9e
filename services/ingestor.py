"""Live MQTT ingestion into the sliding window.

Flow:
  MQTT topic sensors/data
  -> paho network thread (``_on_message``)
  -> bounded inbox queue
  -> worker thread, held until the history bootstrap resolves
  -> SampleNormalizer -> SlidingWindowStore.append -> SnapshotPublisher
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from models.records import ConnectionState, Sample
from services.errors import MalformedMessageError
from services.normalizer import SampleNormalizer
from services.publisher import SnapshotPublisher
from services.window import SlidingWindowStore

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class MqttEndpoint:
    host: str = "localhost"
    port: int = 1883
    transport: str = "tcp"
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "telemetry-monitor"
    keepalive: int = 60


def create_mqtt_client(endpoint: MqttEndpoint) -> mqtt.Client:
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=f"{endpoint.client_id}-{int(time.time())}",
        protocol=mqtt.MQTTv311,
        transport=endpoint.transport,
    )
    if endpoint.username:
        client.username_pw_set(endpoint.username, endpoint.password)
    return client


class StreamIngestor:
    """Bridges one MQTT subscription to the window and tracks its state.

    The paho network thread only enqueues raw payloads. A single worker
    thread applies them in arrival order once :meth:`open_gate` has been
    called, which keeps every append behind the cold-start seed.
    """

    def __init__(
        self,
        window: SlidingWindowStore,
        publisher: SnapshotPublisher,
        normalizer: Optional[SampleNormalizer] = None,
        endpoint: Optional[MqttEndpoint] = None,
        topic: str = "sensors/data",
        queue_size: int = 1000,
        client_factory: Callable[[MqttEndpoint], Any] = create_mqtt_client,
    ) -> None:
        self.window = window
        self.publisher = publisher
        self.normalizer = normalizer or SampleNormalizer()
        self.endpoint = endpoint or MqttEndpoint()
        self.topic = topic
        self._client_factory = client_factory
        self._client: Any = None

        self._state = ConnectionState.connecting
        self._state_lock = threading.Lock()
        self._ingest_lock = threading.Lock()
        self._closed = False

        self._inbox: "queue.Queue[object]" = queue.Queue(maxsize=queue_size)
        self._gate = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self.message_count = 0
        self.parse_errors = 0
        self.dropped_messages = 0

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Connect without blocking; paho reports progress through callbacks."""
        if self._closed:
            raise RuntimeError("StreamIngestor has been closed; create a new instance.")
        if self._worker is None:
            self._worker = threading.Thread(target=self._run, name="telemetry-ingest", daemon=True)
            self._worker.start()

        client = self._client_factory(self.endpoint)
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        self._client = client

        logger.info(
            "Connecting to MQTT broker %s:%d",
            self.endpoint.host,
            self.endpoint.port,
            extra={"topic": self.topic},
        )
        try:
            client.connect_async(self.endpoint.host, self.endpoint.port, keepalive=self.endpoint.keepalive)
            client.loop_start()
        except (OSError, ValueError) as exc:
            self.handle_transport_error(str(exc))

    def open_gate(self) -> None:
        """Let the worker apply queued payloads; called once bootstrap resolves."""
        self._gate.set()

    def submit(self, payload: bytes) -> bool:
        """Queue a raw payload for the worker; returns False when it was dropped."""
        if self._closed:
            return False
        try:
            self._inbox.put_nowait(payload)
        except queue.Full:
            self.dropped_messages += 1
            logger.warning(
                "Ingest queue full, dropping message",
                extra={"topic": self.topic, "reason": "queue full"},
            )
            return False
        return True

    def process_payload(self, payload: bytes | str) -> Optional[Sample]:
        """Normalize and append one payload; malformed payloads are dropped."""
        with self._ingest_lock:
            if self._closed:
                return None
            try:
                sample = self.normalizer.from_payload(payload)
            except MalformedMessageError as exc:
                self.parse_errors += 1
                logger.warning(
                    "Dropping malformed telemetry message",
                    extra={"topic": self.topic, "reason": str(exc)},
                )
                return None

            self.window.append(sample)
            self.message_count += 1
            self.publisher.publish(message_count=self.message_count)
            logger.debug(
                "Applied telemetry sample",
                extra={"message_count": self.message_count, "window_size": len(self.window)},
            )
            return sample

    # Connection lifecycle

    def handle_connected(self) -> None:
        """Broker accepted the connection; (re)subscribe for this cycle."""
        self._set_state(ConnectionState.connecting)
        client = self._client
        if client is None or self._closed:
            return
        result, _mid = client.subscribe(self.topic, qos=0)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self.handle_transport_error(f"subscribe failed rc={result}")

    def handle_subscribed(self, granted: bool) -> None:
        if granted:
            logger.info("Subscribed to telemetry topic", extra={"topic": self.topic})
            self._set_state(ConnectionState.online)
        else:
            self.handle_transport_error("subscription rejected")

    def handle_transport_error(self, reason: str) -> None:
        logger.warning("MQTT transport error", extra={"topic": self.topic, "reason": reason})
        self._set_state(ConnectionState.offline)

    def handle_closed(self, reason: str = "closed") -> None:
        logger.warning("MQTT connection closed", extra={"topic": self.topic, "reason": reason})
        self._set_state(ConnectionState.offline)

    def close(self) -> None:
        """Release the subscription and settle in a terminal offline state."""
        with self._ingest_lock, self._state_lock:
            if self._closed:
                return
            self._closed = True
            self._state = ConnectionState.offline
        # last notification from this ingestor
        self.publisher.publish(connection_state=ConnectionState.offline)

        self._gate.set()
        self._discard_pending()
        # the worker keeps draining once the gate is open, so this cannot stall
        self._inbox.put(_STOP)

        client = self._client
        self._client = None
        if client is not None:
            try:
                client.disconnect()
                client.loop_stop()
            except (OSError, RuntimeError) as exc:
                logger.warning("Error stopping MQTT client", extra={"reason": str(exc)})

        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join(timeout=5.0)

        logger.info(
            "Stopped telemetry ingestion",
            extra={"message_count": self.message_count, "error_count": self.parse_errors},
        )

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            if self._closed or self._state is state:
                return
            self._state = state
            logger.info("Connection state changed", extra={"state": state.value})
            self.publisher.publish(connection_state=state)

    def _discard_pending(self) -> None:
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                return
            self._inbox.task_done()

    def _run(self) -> None:
        while True:
            item = self._inbox.get()
            try:
                if item is _STOP:
                    return
                self._gate.wait()
                if not self._closed:
                    self.process_payload(item)  # type: ignore[arg-type]
            except Exception:
                logger.exception("Unexpected error applying telemetry message")
            finally:
                self._inbox.task_done()

    # paho callbacks (CallbackAPIVersion.VERSION2)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self.handle_transport_error(f"connect refused: {reason_code}")
            return
        logger.info("Connected to MQTT broker")
        self.handle_connected()

    def _on_connect_fail(self, client, userdata) -> None:
        self.handle_transport_error("connect failed")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self.handle_closed(str(reason_code))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None) -> None:
        self.handle_subscribed(all(not code.is_failure for code in reason_code_list))

    def _on_message(self, client, userdata, msg) -> None:
        if msg.topic != self.topic:
            logger.debug("Ignoring message on unexpected topic", extra={"topic": msg.topic})
            return
        self.submit(msg.payload)

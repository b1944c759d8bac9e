"""Lifecycle owner for the telemetry pipeline."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from functools import lru_cache
from threading import Event, Lock
from typing import Any, Callable, Optional

from services.errors import HistoryUnavailableError
from services.history import HistoryLoader, HistoryResult
from services.ingestor import MqttEndpoint, StreamIngestor
from services.normalizer import SampleNormalizer
from services.publisher import Snapshot, SnapshotPublisher
from services.window import SlidingWindowStore
from settings import get_settings
from storage.influx import InfluxQueryClient

logger = logging.getLogger(__name__)


class TelemetryMonitor:
    """Coordinates the history bootstrap, live ingestion and snapshot reads.

    ``start`` connects the ingestor right away and runs the bootstrap query
    on a background worker. Live messages queue up until the bootstrap has
    either seeded the window or failed, then flow into the window in order.
    """

    def __init__(
        self,
        window: SlidingWindowStore,
        publisher: SnapshotPublisher,
        ingestor: StreamIngestor,
        loader: HistoryLoader,
        store: Any = None,
    ) -> None:
        self.window = window
        self.publisher = publisher
        self.ingestor = ingestor
        self.loader = loader
        self.store = store
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history-bootstrap")
        self._bootstrap: Optional[Future[None]] = None
        self._ready = Event()
        self._lifecycle_lock = Lock()
        self._started = False
        self._stopped = False
        self.bootstrap_error: Optional[HistoryUnavailableError] = None

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._stopped:
                raise RuntimeError("TelemetryMonitor has been shut down.")
            if self._started:
                return
            self._started = True
        self.ingestor.start()
        self._bootstrap = self.executor.submit(self._run_bootstrap)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the bootstrap resolved and live ingestion is flowing."""
        return self._ready.wait(timeout)

    def snapshot(self) -> Snapshot:
        return self.publisher.current()

    def subscribe(self, callback: Callable[[Snapshot], None]) -> Callable[[], None]:
        return self.publisher.subscribe(callback)

    def fetch_history(self) -> HistoryResult:
        return self.loader.fetch()

    def shutdown(self) -> None:
        """Close the subscription, stop notifications and release resources."""
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True
        # an in-flight bootstrap must finish before the final offline notification
        self.executor.shutdown(wait=True, cancel_futures=True)
        self.ingestor.close()
        self.publisher.close()
        close = getattr(self.store, "close", None)
        if callable(close):
            close()

    def _run_bootstrap(self) -> None:
        try:
            self.loader.load()
        except HistoryUnavailableError as exc:
            self.bootstrap_error = exc
            logger.warning(
                "History bootstrap failed; continuing with live data only",
                extra={"reason": str(exc)},
            )
        except Exception:
            logger.exception("Unexpected error during history bootstrap")
        finally:
            self.ingestor.open_gate()
            self._ready.set()


@lru_cache
def build_default_monitor() -> TelemetryMonitor:
    """Factory that wires the monitor from environment settings."""
    settings = get_settings()
    window = SlidingWindowStore(capacity=settings.window_capacity)
    publisher = SnapshotPublisher(window)
    normalizer = SampleNormalizer(display_timezone=settings.display_timezone)
    store = InfluxQueryClient(
        url=settings.influx_url,
        token=settings.influx_token,
        org=settings.influx_org,
        bucket=settings.influx_bucket,
        measurement=settings.influx_measurement,
        timeout=settings.history_timeout,
    )
    ingestor = StreamIngestor(
        window=window,
        publisher=publisher,
        normalizer=normalizer,
        endpoint=MqttEndpoint(
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            transport=settings.mqtt_transport,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            client_id=settings.mqtt_client_id,
        ),
        topic=settings.mqtt_topic,
        queue_size=settings.ingest_queue_size,
    )
    loader = HistoryLoader(
        store=store,
        window=window,
        normalizer=normalizer,
        publisher=publisher,
        range_start=settings.history_range,
        limit=settings.history_limit,
    )
    return TelemetryMonitor(
        window=window,
        publisher=publisher,
        ingestor=ingestor,
        loader=loader,
        store=store,
    )

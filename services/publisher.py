"""Last-value-wins broadcast of the current telemetry snapshot."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Optional

from models.records import ConnectionState, Sample
from services.aggregator import WindowStats
from services.window import SlidingWindowStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Immutable view handed to consumers."""

    latest: Optional[Sample]
    window: tuple[Sample, ...]
    stats: WindowStats
    connection_state: ConnectionState
    message_count: int
    history_loaded: bool = False


SnapshotCallback = Callable[[Snapshot], None]


class SnapshotPublisher:
    """Observer hub: subscribers get the current snapshot, then every change.

    Snapshots are built and delivered under one lock, so a subscriber never
    receives an older snapshot after a newer one. Callbacks run on the
    publishing thread and must not block.
    """

    def __init__(self, window: SlidingWindowStore) -> None:
        self.window = window
        self._lock = RLock()
        self._subscribers: Dict[int, SnapshotCallback] = {}
        self._ids = itertools.count(1)
        self._connection_state = ConnectionState.connecting
        self._message_count = 0
        self._history_loaded = False
        self._closed = False
        self._current = self._build()

    def current(self) -> Snapshot:
        with self._lock:
            return self._current

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register ``callback`` and deliver the current snapshot to it right away."""
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = callback
            self._deliver(callback, self._current)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(
        self,
        connection_state: Optional[ConnectionState] = None,
        message_count: Optional[int] = None,
        history_loaded: Optional[bool] = None,
    ) -> Snapshot:
        with self._lock:
            if self._closed:
                return self._current
            if connection_state is not None:
                self._connection_state = connection_state
            if message_count is not None:
                self._message_count = message_count
            if history_loaded is not None:
                self._history_loaded = history_loaded
            snapshot = self._build()
            self._current = snapshot
            for callback in list(self._subscribers.values()):
                self._deliver(callback, snapshot)
            return snapshot

    def close(self) -> None:
        """Stop notifying; the last snapshot stays readable."""
        with self._lock:
            self._closed = True
            self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _build(self) -> Snapshot:
        window, stats = self.window.snapshot()
        return Snapshot(
            latest=window[-1] if window else None,
            window=window,
            stats=stats,
            connection_state=self._connection_state,
            message_count=self._message_count,
            history_loaded=self._history_loaded,
        )

    @staticmethod
    def _deliver(callback: SnapshotCallback, snapshot: Snapshot) -> None:
        try:
            callback(snapshot)
        except Exception:
            logger.exception("Snapshot subscriber failed")

from __future__ import annotations

import logging
from datetime import datetime, timezone

from models.records import ConnectionState, LightStatus, Sample
from services.publisher import Snapshot, SnapshotPublisher
from services.window import SlidingWindowStore


def _sample(temperature: float) -> Sample:
    return Sample(
        temperature=temperature,
        humidity=None,
        light_status=LightStatus.dark,
        light_value=0.0,
        captured_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        display_time="01/01/2024, 5:30:00 am",
    )


def test_subscriber_receives_current_snapshot_immediately() -> None:
    publisher = SnapshotPublisher(SlidingWindowStore(capacity=5))
    received: list[Snapshot] = []

    publisher.subscribe(received.append)

    assert len(received) == 1
    assert received[0].latest is None
    assert received[0].connection_state is ConnectionState.connecting
    assert received[0].message_count == 0


def test_publish_reflects_window_and_changes() -> None:
    window = SlidingWindowStore(capacity=5)
    publisher = SnapshotPublisher(window)
    received: list[Snapshot] = []
    publisher.subscribe(received.append)

    window.append(_sample(21.0))
    publisher.publish(message_count=1)
    publisher.publish(connection_state=ConnectionState.online)

    assert [snapshot.message_count for snapshot in received] == [0, 1, 1]
    latest = received[-1]
    assert latest.connection_state is ConnectionState.online
    assert latest.latest == _sample(21.0)
    assert latest.stats.temperature.avg == 21.0
    assert publisher.current() is latest


def test_earlier_snapshots_do_not_change() -> None:
    window = SlidingWindowStore(capacity=5)
    publisher = SnapshotPublisher(window)
    window.append(_sample(10.0))
    first = publisher.publish(message_count=1)

    window.append(_sample(30.0))
    publisher.publish(message_count=2)

    assert len(first.window) == 1
    assert first.stats.temperature.max == 10.0


def test_unsubscribe_stops_notifications() -> None:
    publisher = SnapshotPublisher(SlidingWindowStore(capacity=5))
    received: list[Snapshot] = []
    unsubscribe = publisher.subscribe(received.append)

    unsubscribe()
    publisher.publish(message_count=3)

    assert len(received) == 1
    assert publisher.subscriber_count == 0


def test_failing_subscriber_does_not_block_others(caplog) -> None:
    publisher = SnapshotPublisher(SlidingWindowStore(capacity=5))
    received: list[Snapshot] = []

    def broken(_snapshot: Snapshot) -> None:
        raise RuntimeError("consumer exploded")

    publisher.subscribe(broken)
    publisher.subscribe(received.append)

    with caplog.at_level(logging.ERROR):
        publisher.publish(history_loaded=True)

    assert received[-1].history_loaded is True
    assert any("Snapshot subscriber failed" in record.getMessage() for record in caplog.records)


def test_close_silences_publisher() -> None:
    publisher = SnapshotPublisher(SlidingWindowStore(capacity=5))
    received: list[Snapshot] = []
    publisher.subscribe(received.append)

    publisher.close()
    snapshot = publisher.publish(message_count=7)

    assert len(received) == 1
    assert snapshot.message_count == 0

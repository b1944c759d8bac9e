"""WebSocket push of snapshot updates."""

from __future__ import annotations

import asyncio
from contextlib import suppress

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api import get_monitor
from app.schemas import SensorSnapshotResponse
from services.monitor import TelemetryMonitor
from services.publisher import Snapshot

router = APIRouter()


def _offer_latest(queue: "asyncio.Queue[Snapshot]", snapshot: Snapshot) -> None:
    # a slow client only ever sees the newest snapshot
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(snapshot)


async def _pump(websocket: WebSocket, queue: "asyncio.Queue[Snapshot]") -> None:
    with suppress(WebSocketDisconnect):
        while True:
            snapshot = await queue.get()
            payload = SensorSnapshotResponse.from_snapshot(snapshot)
            await websocket.send_json(payload.model_dump(mode="json", by_alias=True))


@router.websocket("/ws/sensors")
async def sensor_feed(
    websocket: WebSocket,
    monitor: TelemetryMonitor = Depends(get_monitor),
) -> None:
    await websocket.accept()
    loop = asyncio.get_running_loop()
    latest: "asyncio.Queue[Snapshot]" = asyncio.Queue(maxsize=1)

    def on_snapshot(snapshot: Snapshot) -> None:
        loop.call_soon_threadsafe(_offer_latest, latest, snapshot)

    unsubscribe = monitor.subscribe(on_snapshot)
    sender = asyncio.create_task(_pump(websocket, latest))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        unsubscribe()
        sender.cancel()
        with suppress(asyncio.CancelledError):
            await sender

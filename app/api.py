"""HTTP route definitions for the service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import HealthResponse, SensorSnapshotResponse
from services.errors import HistoryUnavailableError
from services.monitor import TelemetryMonitor, build_default_monitor

logger = logging.getLogger(__name__)

router = APIRouter()


def get_monitor() -> TelemetryMonitor:
    return build_default_monitor()


@router.get(
    "/api/sensors",
    response_model=SensorSnapshotResponse,
    summary="Current reading, live window, stats and connection status.",
)
async def get_sensor_snapshot(
    monitor: TelemetryMonitor = Depends(get_monitor),
) -> SensorSnapshotResponse:
    return SensorSnapshotResponse.from_snapshot(monitor.snapshot())


@router.get(
    "/api/sensors/history",
    response_model=SensorSnapshotResponse,
    summary="Query recent history straight from the time-series store.",
)
def get_sensor_history(
    monitor: TelemetryMonitor = Depends(get_monitor),
) -> SensorSnapshotResponse:
    try:
        result = monitor.fetch_history()
    except HistoryUnavailableError as exc:
        logger.error("History query failed", extra={"reason": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch data",
        ) from exc
    return SensorSnapshotResponse.from_history(result, monitor.snapshot())


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(
    monitor: TelemetryMonitor = Depends(get_monitor),
) -> HealthResponse:
    snapshot = monitor.snapshot()
    return HealthResponse(
        connection_state=snapshot.connection_state,
        window_size=len(snapshot.window),
    )


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root(
    monitor: TelemetryMonitor = Depends(get_monitor),
) -> HealthResponse:
    snapshot = monitor.snapshot()
    return HealthResponse(
        connection_state=snapshot.connection_state,
        window_size=len(snapshot.window),
        detail="See /health for service status.",
    )

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from app.ws import router as ws_router
from logging_config import configure_logging
from services.monitor import build_default_monitor


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    monitor = build_default_monitor()
    monitor.start()
    try:
        yield
    finally:
        monitor.shutdown()
        build_default_monitor.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Environment Telemetry Monitor",
        description="Live temperature, humidity and light readings with rolling statistics.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(ws_router)
    return app

app = create_app()

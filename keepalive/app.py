from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI

from keepalive.config import PingerSettings, load_settings
from keepalive.notifiers import build_notifier
from keepalive.orchestrator import PingCycle
from keepalive.scheduler import PingScheduler
from keepalive.state import StatusBoard


logger = structlog.get_logger(__name__)


def build_cycle(settings: PingerSettings) -> PingCycle:
    board = StatusBoard(settings.targets, settings.interval_seconds)
    return PingCycle(settings, board, build_notifier(settings))


def create_app(settings: Optional[PingerSettings] = None, *, cycle: Optional[PingCycle] = None) -> FastAPI:
    app = FastAPI(title="Keep-alive Pinger", version="0.1.0")
    if cycle is None:
        cycle = build_cycle(settings or load_settings())
    app.state.settings = cycle.settings
    app.state.board = cycle.board
    app.state.scheduler = PingScheduler(cycle)

    @app.on_event("startup")
    async def _startup() -> None:
        s: PingerSettings = app.state.settings
        logger.info(
            "Keep-alive pinger starting",
            targets=list(s.targets),
            interval_minutes=s.interval_minutes,
            notifications=cycle.notifier.name,
        )
        await app.state.scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await app.state.scheduler.stop()
        logger.info("Keep-alive pinger stopped")

    @app.get("/")
    async def status():
        """Health check with the latest cycle results."""
        return app.state.board.status_payload()

    @app.get("/ping-now")
    @app.post("/ping-now")
    async def ping_now():
        """Start one ping cycle in the background without waiting for it."""
        if not app.state.scheduler.trigger_now():
            return {"message": "Ping cycle already in progress", "status": "skipped"}
        return {"message": "Triggering ping cycle...", "status": "running"}

    return app

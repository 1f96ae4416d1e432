from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response, WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect

from klinewatch.config import Settings
from klinewatch.domain.models import Interval
from klinewatch.session import MarketSession, SessionSnapshot, create_session

logger = logging.getLogger(__name__)

UPDATE_QUEUE_SIZE = 100


def offer_latest(queue: asyncio.Queue[SessionSnapshot], snapshot: SessionSnapshot) -> None:
    if queue.full():
        # slow consumer: keep the newest snapshots
        queue.get_nowait()
    queue.put_nowait(snapshot)


class ContextRequest(BaseModel):
    instrument: str
    interval: Interval


def create_app(
    session: MarketSession | None = None,
    settings: Settings | None = None,
    autostart: bool = True,
) -> FastAPI:
    settings = settings or Settings()
    market = session or create_session(settings)
    switch_tasks: set[asyncio.Task[None]] = set()

    def _start_switch(instrument: str, interval: Interval) -> None:
        task = asyncio.create_task(market.switch(instrument, interval))
        switch_tasks.add(task)
        task.add_done_callback(_switch_done)

    def _switch_done(task: asyncio.Task[None]) -> None:
        switch_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Context switch failed: %s", task.exception())

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if autostart:
            _start_switch(settings.default_symbol, settings.default_interval)
        yield
        for task in list(switch_tasks):
            task.cancel()
        await market.close()

    app = FastAPI(title=f"{settings.app_name} API", version="0.1.0", lifespan=lifespan)
    app.state.session = market

    @app.middleware("http")
    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid4().hex)
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
        logger.info(
            "%s %s status=%s request_id=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            request_id,
            elapsed_ms,
        )
        return response

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok", "env": settings.env, "app": settings.app_name}

    @app.get("/readyz")
    def readyz() -> dict[str, str]:
        return {"status": "ready"}

    @app.get("/api/state")
    def state() -> dict[str, object]:
        snapshot = market.snapshot()
        return {
            "instrument": snapshot.instrument,
            "interval": snapshot.interval.value if snapshot.interval is not None else None,
            "connection_state": snapshot.connection_state.value,
            "is_loading": snapshot.is_loading,
            "bars": len(snapshot.window),
            "signals": len(snapshot.signals),
        }

    @app.get("/api/window")
    def window() -> dict[str, object]:
        snapshot = market.snapshot()
        return {
            "instrument": snapshot.instrument,
            "interval": snapshot.interval.value if snapshot.interval is not None else None,
            "bars": [bar.as_dict() for bar in snapshot.window],
        }

    @app.get("/api/signals")
    def signals() -> dict[str, object]:
        return {"signals": [signal.as_dict() for signal in market.signals]}

    @app.post("/api/context", status_code=202)
    async def switch_context(req: ContextRequest) -> dict[str, str]:
        instrument = req.instrument.strip()
        if not instrument:
            raise HTTPException(status_code=400, detail="instrument must be non-empty.")
        _start_switch(instrument, req.interval)
        return {"status": "switching", "instrument": instrument, "interval": req.interval.value}

    @app.websocket("/ws/updates")
    async def updates(websocket: WebSocket) -> None:
        await websocket.accept()
        queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue(maxsize=UPDATE_QUEUE_SIZE)

        async def _forward() -> None:
            while True:
                snapshot = await queue.get()
                await websocket.send_json(snapshot.as_dict())

        unsubscribe = market.subscribe(lambda snapshot: offer_latest(queue, snapshot))
        forward: asyncio.Task[None] | None = None
        try:
            await websocket.send_json(market.snapshot().as_dict())
            forward = asyncio.create_task(_forward())
            # inbound frames are ignored; only the disconnect matters
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
            logger.info("Update subscriber disconnected")
        except WebSocketDisconnect:
            logger.info("Update subscriber disconnected")
        finally:
            if forward is not None:
                forward.cancel()
            unsubscribe()

    return app


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    uvicorn.run("klinewatch.web.app:create_app", factory=True, host=host, port=port)

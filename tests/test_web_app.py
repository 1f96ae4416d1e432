from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi.testclient import TestClient

import klinewatch.web.app as web_app
from klinewatch.config import Settings
from klinewatch.domain.models import Bar, Interval
from klinewatch.session import MarketSession, SessionSnapshot
from klinewatch.signals import CrossoverDetector
from klinewatch.streaming.client import StateCallback, StreamClient


def _bar(index: int, close: float = 10.0) -> Bar:
    return Bar(time=index * 60_000, open=close, high=close, low=close, close=close, volume=1.0)


class _Loader:
    def fetch_history(self, instrument: str, interval: Interval, count: int) -> list[Bar]:
        return [_bar(i) for i in range(7)]


class _Connection:
    def __init__(self, frames: tuple[str, ...] = ()) -> None:
        self.frames = frames

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        for frame in self.frames:
            yield frame


@asynccontextmanager
async def _connect(url: str) -> AsyncIterator[_Connection]:
    yield _Connection()


@asynccontextmanager
async def _connect_crossing(url: str) -> AsyncIterator[_Connection]:
    # one live bar that lifts the fast average over the slow one
    kline = {"t": 420_000, "o": "20", "h": "20", "l": "20", "c": "20", "v": "1", "x": False}
    yield _Connection((json.dumps({"e": "continuous_kline", "k": kline}),))


def _stream_factory(on_state: StateCallback) -> StreamClient:
    return StreamClient("wss://example.test/ws/", connector=_connect, on_state=on_state)


def _crossing_stream_factory(on_state: StateCallback) -> StreamClient:
    return StreamClient("wss://example.test/ws/", connector=_connect_crossing, on_state=on_state)


def _session(stream_factory: Any = _stream_factory) -> MarketSession:
    return MarketSession(
        loader=_Loader(),
        stream_factory=stream_factory,
        detector=CrossoverDetector(fast_period=3, slow_period=5),
        capacity=50,
    )


def _client(session: MarketSession | None = None) -> TestClient:
    app = web_app.create_app(session=session or _session(), settings=Settings(), autostart=False)
    return TestClient(app)


def test_health_and_readiness_endpoints() -> None:
    client = _client()
    health = client.get("/healthz")
    ready = client.get("/readyz")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["app"] == "KlineWatch"
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"


def test_request_id_header_roundtrip() -> None:
    client = _client()
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Process-Time-Ms" in response.headers


def test_window_and_signals_reflect_session() -> None:
    session = _session()
    session.buffer.seed(_bar(i) for i in range(7))
    session.process_update(_bar(7, 20.0), is_closed=False)
    client = _client(session)

    window = client.get("/api/window").json()
    signals = client.get("/api/signals").json()["signals"]
    state = client.get("/api/state").json()

    assert len(window["bars"]) == 8
    assert window["bars"][-1] == {
        "time": 420_000,
        "open": 20.0,
        "high": 20.0,
        "low": 20.0,
        "close": 20.0,
        "volume": 1.0,
    }
    assert signals == [
        {"id": "420000-up-cross", "time": 420_000, "direction": "up-cross", "price": 20.0}
    ]
    assert state["bars"] == 8
    assert state["signals"] == 1
    assert state["connection_state"] == "disconnected"


def test_context_switch_backfills_new_context() -> None:
    with _client() as client:
        response = client.post("/api/context", json={"instrument": "BTCUSDT", "interval": "5m"})
        assert response.status_code == 202
        assert response.json() == {
            "status": "switching",
            "instrument": "BTCUSDT",
            "interval": "5m",
        }

        state: dict[str, object] = {}
        for _ in range(100):
            state = client.get("/api/state").json()
            if state["instrument"] == "btcusdt" and not state["is_loading"]:
                break
            time.sleep(0.02)

    assert state["instrument"] == "btcusdt"
    assert state["interval"] == "5m"
    assert state["bars"] == 7


def test_context_switch_validates_payload() -> None:
    client = _client()
    blank = client.post("/api/context", json={"instrument": "  ", "interval": "1m"})
    bad_interval = client.post("/api/context", json={"instrument": "SOLUSDT", "interval": "7m"})
    assert blank.status_code == 400
    assert bad_interval.status_code == 422


def test_updates_websocket_sends_initial_snapshot() -> None:
    session = _session()
    session.buffer.seed(_bar(i) for i in range(3))
    client = _client(session)

    with client.websocket_connect("/ws/updates") as websocket:
        snapshot = websocket.receive_json()

    assert len(snapshot["window"]) == 3
    assert snapshot["signals"] == []
    assert snapshot["is_loading"] is False
    assert session._listeners == []


def test_updates_websocket_pushes_session_changes() -> None:
    session = _session(_crossing_stream_factory)

    with _client(session) as client, client.websocket_connect("/ws/updates") as websocket:
        initial = websocket.receive_json()
        assert initial["window"] == []

        response = client.post("/api/context", json={"instrument": "SOLUSDT", "interval": "1m"})
        assert response.status_code == 202

        pushed = [websocket.receive_json()]
        while not pushed[-1]["signals"]:
            pushed.append(websocket.receive_json())

    assert any(s["is_loading"] for s in pushed)
    assert pushed[-1]["instrument"] == "solusdt"
    assert pushed[-1]["window"][-1]["close"] == 20.0
    assert pushed[-1]["signals"] == [
        {"id": "420000-up-cross", "time": 420_000, "direction": "up-cross", "price": 20.0}
    ]


def test_offer_latest_drops_oldest_snapshot_when_full() -> None:
    first, second, third = (_session().snapshot() for _ in range(3))

    async def scenario() -> list[SessionSnapshot]:
        queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue(maxsize=2)
        for snapshot in (first, second, third):
            web_app.offer_latest(queue, snapshot)
        return [queue.get_nowait() for _ in range(queue.qsize())]

    kept = asyncio.run(scenario())

    assert len(kept) == 2
    assert kept[0] is second
    assert kept[1] is third

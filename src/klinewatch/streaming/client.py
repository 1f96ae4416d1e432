from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Protocol

import websockets

from klinewatch.domain.models import Bar, BarUpdate, ConnectionState, Interval
from klinewatch.streaming.decoder import KlineDecodeError, decode_message

logger = logging.getLogger(__name__)

DEFAULT_WS_BASE_URL = "wss://fstream.binance.com/ws/"

BarCallback = Callable[[Bar, bool], Awaitable[None] | None]
ErrorCallback = Callable[[BaseException], None]
StateCallback = Callable[[ConnectionState], None]


class StreamConnection(Protocol):
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], AbstractAsyncContextManager[StreamConnection]]


def websocket_connector(url: str) -> AbstractAsyncContextManager[StreamConnection]:
    return websockets.connect(url, ping_interval=20, ping_timeout=20)


@dataclass(slots=True, frozen=True)
class ReconnectPolicy:
    """Capped exponential backoff between reconnect attempts."""

    max_attempts: int = 5
    initial_delay_seconds: float = 3.0
    max_delay_seconds: float = 60.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be greater than zero")
        if self.initial_delay_seconds <= 0:
            raise ValueError("initial_delay_seconds must be greater than zero")
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def delay(self, attempt: int) -> float:
        """Delay before the 1-based ``attempt``."""
        raw = self.initial_delay_seconds * self.multiplier ** max(0, attempt - 1)
        return min(self.max_delay_seconds, raw)


class StreamClient:
    """Kline stream for a single ``(instrument, interval)`` at a time.

    A reader task decodes frames into a bounded queue; a single dispatcher
    task drains the queue and calls ``on_bar`` one update at a time.
    ``disconnect`` drops the callbacks before returning, so nothing queued
    by a previous connection reaches the caller afterwards.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_WS_BASE_URL,
        contract_type: str = "perpetual",
        *,
        reconnect: ReconnectPolicy | None = None,
        queue_maxsize: int = 1_000,
        connector: Connector | None = None,
        on_state: StateCallback | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if not endpoint.strip():
            raise ValueError("endpoint must be non-empty")
        if not contract_type.strip():
            raise ValueError("contract_type must be non-empty")
        if queue_maxsize <= 0:
            raise ValueError("queue_maxsize must be greater than zero")

        self.endpoint = endpoint
        self.contract_type = contract_type
        self.reconnect = reconnect
        self.queue_maxsize = queue_maxsize
        self._connector: Connector = connector or websocket_connector
        self._on_state = on_state
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._on_bar: BarCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def stream_url(self, instrument: str, interval: Interval) -> str:
        stream_name = (
            f"{instrument.strip().lower()}_{self.contract_type.strip().lower()}"
            f"@continuousKline_{Interval(interval).value}"
        )
        return f"{self.endpoint}{stream_name}"

    async def connect(
        self,
        instrument: str,
        interval: Interval,
        on_bar: BarCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        if not instrument.strip():
            raise ValueError("instrument must be non-empty")
        self.disconnect()
        await self.wait_closed()

        url = self.stream_url(instrument, interval)
        self._generation += 1
        generation = self._generation
        self._on_bar = on_bar
        self._on_error = on_error
        queue: asyncio.Queue[BarUpdate | None] = asyncio.Queue(maxsize=self.queue_maxsize)

        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s", url)
        self._tasks = [
            asyncio.create_task(self._read_loop(url, generation, queue)),
            asyncio.create_task(self._dispatch_loop(generation, queue)),
        ]

    def disconnect(self) -> None:
        self._generation += 1
        self._on_bar = None
        self._on_error = None
        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._state is not ConnectionState.DISCONNECTED:
            logger.info("Stream disconnected")
            self._set_state(ConnectionState.DISCONNECTED)

    async def wait_closed(self) -> None:
        tasks, self._tasks = self._tasks, []
        # a handler may reconnect from inside the dispatcher task
        current = asyncio.current_task()
        tasks = [task for task in tasks if task is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    async def _read_loop(
        self,
        url: str,
        generation: int,
        queue: asyncio.Queue[BarUpdate | None],
    ) -> None:
        await self._receive(url, generation, queue)
        if self._is_current(generation):
            # end of stream for the dispatcher
            await queue.put(None)

    async def _receive(
        self,
        url: str,
        generation: int,
        queue: asyncio.Queue[BarUpdate | None],
    ) -> None:
        attempt = 0
        while self._is_current(generation):
            try:
                async with self._connector(url) as connection:
                    if not self._is_current(generation):
                        return
                    attempt = 0
                    self._set_state(ConnectionState.CONNECTED)
                    logger.info("Stream connected: %s", url)
                    async for raw in connection:
                        if not self._is_current(generation):
                            return
                        update = self._decode(raw)
                        if update is not None:
                            await queue.put(update)
                logger.info("Stream closed: %s", url)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Stream error on %s: %s", url, exc)
                self._report_error(generation, exc)

            if not self._is_current(generation):
                return
            if self.reconnect is None:
                self._set_state(ConnectionState.DISCONNECTED)
                return
            if attempt >= self.reconnect.max_attempts:
                logger.warning("Max reconnect attempts reached for %s", url)
                self._set_state(ConnectionState.DISCONNECTED)
                return
            attempt += 1
            delay = self.reconnect.delay(attempt)
            self._set_state(ConnectionState.RECONNECTING)
            logger.info(
                "Reconnecting to %s in %.1fs (attempt %s/%s)",
                url,
                delay,
                attempt,
                self.reconnect.max_attempts,
            )
            await self._sleep(delay)

    async def _dispatch_loop(
        self,
        generation: int,
        queue: asyncio.Queue[BarUpdate | None],
    ) -> None:
        while True:
            update = await queue.get()
            if update is None or not self._is_current(generation):
                return
            callback = self._on_bar
            if callback is None:
                return
            try:
                result = callback(update.bar, update.is_closed)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Bar handler failed for time=%s", update.bar.time)

    def _decode(self, raw: str | bytes) -> BarUpdate | None:
        try:
            return decode_message(raw)
        except KlineDecodeError as exc:
            logger.warning("Skipping malformed stream frame: %s", exc)
            return None

    def _report_error(self, generation: int, exc: BaseException) -> None:
        callback = self._on_error
        if callback is None or not self._is_current(generation):
            return
        try:
            callback(exc)
        except Exception:
            logger.exception("Stream error handler failed")

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from klinewatch.config import Settings
from klinewatch.data.base import HistoryProvider
from klinewatch.data.binance import BinanceHistoryLoader
from klinewatch.domain.models import Bar, ConnectionState, Interval, Signal
from klinewatch.signals import CrossoverDetector, SignalStore
from klinewatch.streaming.client import ReconnectPolicy, StateCallback, StreamClient
from klinewatch.window import ApplyOutcome, SlidingWindowBuffer

logger = logging.getLogger(__name__)

StreamFactory = Callable[[StateCallback], StreamClient]


@dataclass(slots=True, frozen=True)
class SessionSnapshot:
    instrument: str | None
    interval: Interval | None
    window: tuple[Bar, ...]
    signals: tuple[Signal, ...]
    connection_state: ConnectionState
    is_loading: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "interval": self.interval.value if self.interval is not None else None,
            "connection_state": self.connection_state.value,
            "is_loading": self.is_loading,
            "window": [bar.as_dict() for bar in self.window],
            "signals": [signal.as_dict() for signal in self.signals],
        }


Listener = Callable[[SessionSnapshot], None]


class MarketSession:
    """Backfill, live stream, window and signals for one instrument/interval.

    Switching context disconnects the current stream, clears the window and
    signals, seeds the window from history and only then connects a fresh
    stream client built by ``stream_factory``.
    """

    def __init__(
        self,
        loader: HistoryProvider,
        stream_factory: StreamFactory,
        detector: CrossoverDetector | None = None,
        capacity: int = 180,
    ) -> None:
        self.loader = loader
        self.detector = detector or CrossoverDetector()
        self.buffer = SlidingWindowBuffer(capacity)
        self.store = SignalStore()
        self.instrument: str | None = None
        self.interval: Interval | None = None
        self.connection_state = ConnectionState.DISCONNECTED
        self.is_loading = False
        self._stream_factory = stream_factory
        self._stream: StreamClient | None = None
        self._context_id = 0
        self._listeners: list[Listener] = []

    @property
    def window(self) -> tuple[Bar, ...]:
        return self.buffer.snapshot()

    @property
    def signals(self) -> list[Signal]:
        return self.store.list()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            instrument=self.instrument,
            interval=self.interval,
            window=self.buffer.snapshot(),
            signals=tuple(self.store.list()),
            connection_state=self.connection_state,
            is_loading=self.is_loading,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def switch(self, instrument: str, interval: Interval | str) -> None:
        if not instrument.strip():
            raise ValueError("instrument must be non-empty")
        interval = Interval(interval)
        name = instrument.strip().lower()
        self._context_id += 1
        context_id = self._context_id

        await self._drop_stream()
        if context_id != self._context_id:
            # a newer switch took over while the old stream was closing
            return
        self.buffer.reset()
        self.store.clear()
        self.instrument = name
        self.interval = interval
        self.is_loading = True
        self._notify()
        logger.info("Switching to %s %s", name, interval.value)

        history = await self._fetch_history(name, interval)
        if context_id != self._context_id:
            logger.info("Discarding stale history for %s %s", name, interval.value)
            return
        self.buffer.seed(history)
        self.is_loading = False
        self._notify()

        stream = self._stream_factory(self._on_state_change)
        self._stream = stream
        await stream.connect(
            name,
            interval,
            self._handle_bar,
            on_error=self._on_stream_error,
        )

    def process_update(self, bar: Bar, is_closed: bool) -> Signal | None:
        previous = self.buffer.snapshot()
        current = self.buffer.apply(bar)
        if self.buffer.last_outcome is ApplyOutcome.REJECTED:
            return None
        if is_closed:
            logger.debug("Bar closed at time=%s close=%s", bar.time, bar.close)

        signal = self.detector.detect(previous, current)
        added = signal is not None and self.store.add(signal)
        self._notify()
        return signal if added else None

    async def close(self) -> None:
        self._context_id += 1
        await self._drop_stream()

    async def _handle_bar(self, bar: Bar, is_closed: bool) -> None:
        context_id = self._context_id
        if self._has_gap(bar):
            await self._reseed(context_id)
            if context_id != self._context_id:
                return
        self.process_update(bar, is_closed)

    def _has_gap(self, bar: Bar) -> bool:
        last = self.buffer.last
        if last is None or self.interval is None:
            return False
        return bar.time - last.time > self.interval.milliseconds

    async def _reseed(self, context_id: int) -> None:
        if self.instrument is None or self.interval is None:
            return
        last = self.buffer.last
        logger.warning(
            "Gap detected after time=%s; re-seeding %s %s from history",
            last.time if last is not None else None,
            self.instrument,
            self.interval.value,
        )
        history = await self._fetch_history(self.instrument, self.interval)
        if context_id != self._context_id:
            return
        if not history:
            logger.warning("Re-seed returned no bars; keeping current window")
            return
        self.buffer.reset()
        self.buffer.seed(history)
        self._notify()

    async def _fetch_history(self, instrument: str, interval: Interval) -> list[Bar]:
        return await asyncio.to_thread(
            self.loader.fetch_history,
            instrument,
            interval,
            self.buffer.capacity,
        )

    async def _drop_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.disconnect()
            await stream.wait_closed()
        self._on_state_change(ConnectionState.DISCONNECTED)

    def _on_state_change(self, state: ConnectionState) -> None:
        if state is self.connection_state:
            return
        self.connection_state = state
        self._notify()

    def _on_stream_error(self, exc: BaseException) -> None:
        logger.warning("Stream error for %s %s: %s", self.instrument, self.interval, exc)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener failed")


def create_session(settings: Settings, loader: HistoryProvider | None = None) -> MarketSession:
    history = loader or BinanceHistoryLoader(
        base_url=settings.rest_base_url,
        contract_type=settings.contract_type,
        timeout_seconds=settings.http_timeout_seconds,
    )
    policy = (
        ReconnectPolicy(
            max_attempts=settings.reconnect_max_attempts,
            initial_delay_seconds=settings.reconnect_initial_delay_seconds,
            max_delay_seconds=max(
                settings.reconnect_max_delay_seconds,
                settings.reconnect_initial_delay_seconds,
            ),
        )
        if settings.reconnect_enabled
        else None
    )

    def _stream_factory(on_state: StateCallback) -> StreamClient:
        return StreamClient(
            endpoint=settings.ws_base_url,
            contract_type=settings.contract_type,
            reconnect=policy,
            queue_maxsize=settings.queue_maxsize,
            on_state=on_state,
        )

    return MarketSession(
        loader=history,
        stream_factory=_stream_factory,
        detector=CrossoverDetector(
            fast_period=settings.fast_period,
            slow_period=settings.slow_period,
            kind=settings.ma_kind,
        ),
        capacity=settings.window_capacity,
    )

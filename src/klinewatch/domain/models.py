from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

_SECOND_MS = 1_000
_MINUTE_MS = 60 * _SECOND_MS
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS


class Interval(StrEnum):
    """Exchange kline interval codes."""

    S1 = "1s"
    M1 = "1m"
    M3 = "3m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H2 = "2h"
    H4 = "4h"
    H6 = "6h"
    H8 = "8h"
    H12 = "12h"
    D1 = "1d"
    D3 = "3d"
    W1 = "1w"

    @property
    def milliseconds(self) -> int:
        return _INTERVAL_MS[self]


_INTERVAL_MS: dict[Interval, int] = {
    Interval.S1: _SECOND_MS,
    Interval.M1: _MINUTE_MS,
    Interval.M3: 3 * _MINUTE_MS,
    Interval.M5: 5 * _MINUTE_MS,
    Interval.M15: 15 * _MINUTE_MS,
    Interval.M30: 30 * _MINUTE_MS,
    Interval.H1: _HOUR_MS,
    Interval.H2: 2 * _HOUR_MS,
    Interval.H4: 4 * _HOUR_MS,
    Interval.H6: 6 * _HOUR_MS,
    Interval.H8: 8 * _HOUR_MS,
    Interval.H12: 12 * _HOUR_MS,
    Interval.D1: _DAY_MS,
    Interval.D3: 3 * _DAY_MS,
    Interval.W1: 7 * _DAY_MS,
}


class Direction(StrEnum):
    UP_CROSS = "up-cross"
    DOWN_CROSS = "down-cross"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(slots=True, frozen=True)
class Bar:
    """One OHLCV sample; ``time`` is the bucket start in epoch milliseconds."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def as_dict(self) -> dict[str, float | int]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(slots=True, frozen=True)
class BarUpdate:
    bar: Bar
    is_closed: bool


@dataclass(slots=True, frozen=True)
class Signal:
    time: int
    direction: Direction
    price: float
    id: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", f"{self.time}-{self.direction.value}")

    @property
    def key(self) -> tuple[int, Direction]:
        return (self.time, self.direction)

    def as_dict(self) -> dict[str, float | int | str]:
        return {
            "id": self.id,
            "time": self.time,
            "direction": self.direction.value,
            "price": self.price,
        }

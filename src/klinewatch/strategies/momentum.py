from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

from klinewatch.domain.models import Direction, Signal
from klinewatch.indicators import MovingAverageKind
from klinewatch.strategies.base import CrossoverStrategy


@dataclass(slots=True)
class CrossoverConfig:
    fast_period: int = 7
    slow_period: int = 25
    kind: MovingAverageKind = MovingAverageKind.SMA


class MovingAverageCrossStrategy(CrossoverStrategy):
    """Vectorized scan over a bar frame using the same crossing rule as
    :class:`klinewatch.signals.CrossoverDetector`."""

    def __init__(self, config: CrossoverConfig | None = None) -> None:
        self.config = config or CrossoverConfig()
        if self.config.fast_period <= 0 or self.config.slow_period <= 0:
            raise ValueError("periods must be greater than zero")
        if self.config.fast_period >= self.config.slow_period:
            raise ValueError("fast_period must be < slow_period")

    def moving_averages(self, data: pd.DataFrame) -> tuple[pd.Series, pd.Series]:
        close = data["close"].astype(float)
        return (
            _moving_average(close, self.config.fast_period, self.config.kind),
            _moving_average(close, self.config.slow_period, self.config.kind),
        )

    def generate_signals(self, data: pd.DataFrame) -> pd.Series:
        fast, slow = self.moving_averages(data)
        fast_prev = fast.shift(1)
        slow_prev = slow.shift(1)

        # NaN comparisons are False, so rows without enough history stay 0
        up = (fast_prev <= slow_prev) & (fast > slow)
        down = (fast_prev >= slow_prev) & (fast < slow)

        signals = pd.Series(0, index=data.index, dtype=int)
        signals[up] = 1
        signals[down] = -1
        return signals

    def crossovers(self, data: pd.DataFrame) -> list[Signal]:
        """Signals for a frame indexed by bucket-start timestamps."""
        marks = self.generate_signals(data)
        close = data["close"].astype(float)
        result: list[Signal] = []
        for timestamp, mark in marks[marks != 0].items():
            result.append(
                Signal(
                    time=_to_epoch_ms(timestamp),
                    direction=Direction.UP_CROSS if mark > 0 else Direction.DOWN_CROSS,
                    price=float(close.loc[timestamp]),
                )
            )
        return result


def _moving_average(close: pd.Series, period: int, kind: MovingAverageKind) -> pd.Series:
    if MovingAverageKind(kind) is MovingAverageKind.SMA:
        return close.rolling(period, min_periods=period).mean()

    if len(close) < period:
        return pd.Series(float("nan"), index=close.index)
    seed = pd.Series([close.iloc[:period].mean()], index=close.index[period - 1 : period])
    seeded = pd.concat([seed, close.iloc[period:]])
    ema = seeded.ewm(span=period, adjust=False).mean()
    return ema.reindex(close.index)


def _to_epoch_ms(value: object) -> int:
    if isinstance(value, pd.Timestamp):
        return int(value.value // 1_000_000)
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise TypeError("Index value must be a timestamp or epoch milliseconds") from exc

from __future__ import annotations

import logging
from collections.abc import Sequence

from klinewatch.domain.models import Bar, Direction, Signal
from klinewatch.indicators import MovingAverageKind, moving_average

logger = logging.getLogger(__name__)


def cross_direction(
    fast_prev: float,
    slow_prev: float,
    fast_curr: float,
    slow_curr: float,
) -> Direction | None:
    """Classify a fast/slow transition.

    Equality on the previous step counts as being on the average and is
    folded into whichever side the current step strictly resolves to.
    """
    if fast_prev <= slow_prev and fast_curr > slow_curr:
        return Direction.UP_CROSS
    if fast_prev >= slow_prev and fast_curr < slow_curr:
        return Direction.DOWN_CROSS
    return None


def detect(
    previous_window: Sequence[Bar],
    current_window: Sequence[Bar],
    fast_period: int,
    slow_period: int,
    kind: MovingAverageKind | str = MovingAverageKind.SMA,
) -> Signal | None:
    fast_prev = moving_average(previous_window, fast_period, kind)
    slow_prev = moving_average(previous_window, slow_period, kind)
    fast_curr = moving_average(current_window, fast_period, kind)
    slow_curr = moving_average(current_window, slow_period, kind)
    if fast_prev is None or slow_prev is None or fast_curr is None or slow_curr is None:
        return None

    direction = cross_direction(fast_prev, slow_prev, fast_curr, slow_curr)
    if direction is None:
        return None
    last = current_window[-1]
    return Signal(time=last.time, direction=direction, price=last.close)


class CrossoverDetector:
    def __init__(
        self,
        fast_period: int = 7,
        slow_period: int = 25,
        kind: MovingAverageKind | str = MovingAverageKind.SMA,
    ) -> None:
        if fast_period <= 0 or slow_period <= 0:
            raise ValueError("periods must be greater than zero")
        if fast_period >= slow_period:
            raise ValueError("fast_period must be < slow_period")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.kind = MovingAverageKind(kind)

    def detect(
        self,
        previous_window: Sequence[Bar],
        current_window: Sequence[Bar],
    ) -> Signal | None:
        return detect(
            previous_window,
            current_window,
            self.fast_period,
            self.slow_period,
            self.kind,
        )


class SignalStore:
    """Insertion-ordered signals, unique per ``(time, direction)``."""

    def __init__(self) -> None:
        self._signals: dict[tuple[int, Direction], Signal] = {}

    def add(self, signal: Signal) -> bool:
        if signal.key in self._signals:
            return False
        self._signals[signal.key] = signal
        logger.info(
            "Signal %s at time=%s price=%s",
            signal.direction.value,
            signal.time,
            signal.price,
        )
        return True

    def list(self) -> list[Signal]:
        return list(self._signals.values())

    def clear(self) -> None:
        self._signals.clear()

    def __len__(self) -> int:
        return len(self._signals)

    def __contains__(self, signal: object) -> bool:
        return isinstance(signal, Signal) and signal.key in self._signals

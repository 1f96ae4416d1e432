"""Moving averages over the tail of a bar window.

Every call recomputes from the window it is given; nothing is carried between
calls. ``None`` means there is not enough history for the requested period and
must not be treated as a value.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

from klinewatch.domain.models import Bar


class MovingAverageKind(StrEnum):
    SMA = "sma"
    EMA = "ema"


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError("period must be > 0")


def simple_moving_average(window: Sequence[Bar], period: int) -> float | None:
    """Mean close over the last ``period`` bars."""
    _check_period(period)
    n = len(window)
    if n < period:
        return None
    total = 0.0
    for bar in window[n - period :]:
        total += bar.close
    return total / period


def exponential_moving_average(window: Sequence[Bar], period: int) -> float | None:
    """EMA of the closes, seeded with the SMA of the first ``period`` bars.

    ``ema = (close - ema) * k + ema`` with ``k = 2 / (period + 1)``.
    """
    _check_period(period)
    if len(window) < period:
        return None
    multiplier = 2.0 / (period + 1)
    ema = sum(bar.close for bar in window[:period]) / period
    for bar in window[period:]:
        ema = (bar.close - ema) * multiplier + ema
    return ema


def moving_average(
    window: Sequence[Bar],
    period: int,
    kind: MovingAverageKind | str = MovingAverageKind.SMA,
) -> float | None:
    if MovingAverageKind(kind) is MovingAverageKind.EMA:
        return exponential_moving_average(window, period)
    return simple_moving_average(window, period)

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from enum import StrEnum

import pandas as pd

from klinewatch.domain.models import Bar

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 180
FRAME_COLUMNS = ["open", "high", "low", "close", "volume"]


class ApplyOutcome(StrEnum):
    APPENDED = "appended"
    REPLACED = "replaced"
    REJECTED = "rejected"


class SlidingWindowBuffer:
    """Fixed-capacity, time-ordered bar window.

    A bar with the same ``time`` as the last one replaces it (the open bar
    being revised); a later bar is appended and the oldest bars are evicted
    once ``capacity`` is exceeded; an earlier bar is rejected.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be greater than zero")
        self._capacity = capacity
        self._bars: deque[Bar] = deque(maxlen=capacity)
        self.last_outcome: ApplyOutcome | None = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last(self) -> Bar | None:
        return self._bars[-1] if self._bars else None

    def __len__(self) -> int:
        return len(self._bars)

    def snapshot(self) -> tuple[Bar, ...]:
        return tuple(self._bars)

    def apply(self, bar: Bar) -> tuple[Bar, ...]:
        last = self.last
        if last is None or bar.time > last.time:
            # deque(maxlen) evicts from the front
            self._bars.append(bar)
            self.last_outcome = ApplyOutcome.APPENDED
        elif bar.time == last.time:
            self._bars[-1] = bar
            self.last_outcome = ApplyOutcome.REPLACED
        else:
            logger.warning(
                "Rejecting out-of-order bar time=%s; last buffered time=%s",
                bar.time,
                last.time,
            )
            self.last_outcome = ApplyOutcome.REJECTED
        return self.snapshot()

    def seed(self, bars: Iterable[Bar]) -> tuple[Bar, ...]:
        for bar in bars:
            self.apply(bar)
        return self.snapshot()

    def reset(self, capacity: int | None = None) -> None:
        """Clear the window; a new capacity only takes effect through a reset."""
        if capacity is not None:
            if capacity <= 0:
                raise ValueError("capacity must be greater than zero")
            self._capacity = capacity
        self._bars = deque(maxlen=self._capacity)
        self.last_outcome = None

    def to_frame(self) -> pd.DataFrame:
        return bars_to_frame(self._bars)


def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """OHLCV frame indexed by UTC bucket-start timestamp."""
    rows = list(bars)
    index = pd.to_datetime([bar.time for bar in rows], unit="ms", utc=True)
    frame = pd.DataFrame(
        {
            "open": [bar.open for bar in rows],
            "high": [bar.high for bar in rows],
            "low": [bar.low for bar in rows],
            "close": [bar.close for bar in rows],
            "volume": [bar.volume for bar in rows],
        },
        index=index,
        columns=FRAME_COLUMNS,
        dtype=float,
    )
    frame.index.name = "time"
    return frame

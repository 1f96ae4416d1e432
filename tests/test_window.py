from __future__ import annotations

import random

import pandas as pd
import pytest

from klinewatch.domain.models import Bar
from klinewatch.window import ApplyOutcome, SlidingWindowBuffer, bars_to_frame


def _bar(time: int, close: float = 10.0) -> Bar:
    return Bar(time=time, open=close, high=close + 1.0, low=close - 1.0, close=close, volume=1.0)


def test_append_keeps_time_order() -> None:
    buffer = SlidingWindowBuffer(capacity=5)
    for time in (0, 60_000, 120_000):
        buffer.apply(_bar(time))
    assert [bar.time for bar in buffer.snapshot()] == [0, 60_000, 120_000]
    assert buffer.last_outcome is ApplyOutcome.APPENDED


def test_same_time_replaces_last_bar() -> None:
    buffer = SlidingWindowBuffer(capacity=5)
    buffer.seed([_bar(0), _bar(60_000, close=10.0)])

    window = buffer.apply(_bar(60_000, close=11.5))

    assert len(window) == 2
    assert window[-1].close == 11.5
    assert buffer.last_outcome is ApplyOutcome.REPLACED


def test_out_of_order_bar_is_rejected() -> None:
    buffer = SlidingWindowBuffer(capacity=5)
    buffer.seed([_bar(60_000), _bar(120_000)])
    before = buffer.snapshot()

    after = buffer.apply(_bar(60_000, close=99.0))

    assert after == before
    assert buffer.last_outcome is ApplyOutcome.REJECTED


def test_capacity_evicts_oldest_bars() -> None:
    buffer = SlidingWindowBuffer(capacity=3)
    buffer.seed(_bar(i * 60_000, close=float(i)) for i in range(6))
    assert [bar.close for bar in buffer.snapshot()] == [3.0, 4.0, 5.0]
    assert len(buffer) == 3


def test_window_invariants_hold_for_random_updates() -> None:
    rng = random.Random(7)
    buffer = SlidingWindowBuffer(capacity=10)
    time = 0
    accepted: set[int] = set()
    for _ in range(300):
        step = rng.choice([-1, 0, 0, 1, 1, 1, 3])
        time = max(0, time + step * 60_000)
        window = buffer.apply(_bar(time, close=rng.uniform(1.0, 2.0)))
        if buffer.last_outcome is not ApplyOutcome.REJECTED:
            accepted.add(time)
        assert len(window) == min(buffer.capacity, len(accepted))
        times = [bar.time for bar in window]
        assert times == sorted(set(times))


def test_reset_clears_and_applies_new_capacity() -> None:
    buffer = SlidingWindowBuffer(capacity=3)
    buffer.seed([_bar(0), _bar(60_000)])

    buffer.reset(capacity=2)
    assert buffer.snapshot() == ()
    assert buffer.last is None
    assert buffer.capacity == 2

    buffer.seed(_bar(i * 60_000) for i in range(4))
    assert len(buffer) == 2


def test_invalid_capacity_is_rejected() -> None:
    with pytest.raises(ValueError):
        SlidingWindowBuffer(capacity=0)
    buffer = SlidingWindowBuffer(capacity=1)
    with pytest.raises(ValueError):
        buffer.reset(capacity=-1)


def test_snapshot_is_not_affected_by_later_updates() -> None:
    buffer = SlidingWindowBuffer(capacity=3)
    snapshot = buffer.apply(_bar(0))
    buffer.apply(_bar(60_000))
    assert len(snapshot) == 1


def test_to_frame_has_utc_index_and_ohlcv_columns() -> None:
    buffer = SlidingWindowBuffer(capacity=3)
    buffer.seed([_bar(0, close=10.0), _bar(60_000, close=12.0)])

    frame = buffer.to_frame()

    assert list(frame.columns) == ["open", "high", "low", "close", "volume"]
    assert frame.index.name == "time"
    assert frame.index[1] == pd.Timestamp("1970-01-01 00:01:00", tz="UTC")
    assert frame["close"].tolist() == [10.0, 12.0]


def test_bars_to_frame_handles_empty_input() -> None:
    frame = bars_to_frame([])
    assert frame.empty
    assert list(frame.columns) == ["open", "high", "low", "close", "volume"]

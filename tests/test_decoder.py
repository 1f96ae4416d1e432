from __future__ import annotations

import json

import pytest

from klinewatch.domain.models import Bar
from klinewatch.streaming.decoder import KlineDecodeError, decode_message


def _frame(**overrides: object) -> dict[str, object]:
    kline: dict[str, object] = {
        "t": 1_700_000_040_000,
        "T": 1_700_000_099_999,
        "i": "1m",
        "o": "101.5",
        "h": "102.0",
        "l": "101.0",
        "c": "101.8",
        "v": "350.25",
        "x": False,
    }
    kline.update(overrides)
    return {"e": "continuous_kline", "E": 1_700_000_050_000, "ps": "SOLUSDT", "k": kline}


def test_decode_kline_frame() -> None:
    update = decode_message(json.dumps(_frame(x=True)))

    assert update is not None
    assert update.is_closed is True
    assert update.bar == Bar(
        time=1_700_000_040_000,
        open=101.5,
        high=102.0,
        low=101.0,
        close=101.8,
        volume=350.25,
    )


def test_decode_accepts_bytes() -> None:
    update = decode_message(json.dumps(_frame()).encode("utf-8"))
    assert update is not None
    assert update.is_closed is False


def test_other_event_types_are_ignored() -> None:
    assert decode_message(json.dumps({"e": "markPriceUpdate", "p": "1.0"})) is None
    assert decode_message(json.dumps({"result": None, "id": 1})) is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps([1, 2, 3]),
        json.dumps({"e": "continuous_kline", "k": "oops"}),
        json.dumps(_frame(c="abc")),
        json.dumps(_frame(x="false")),
    ],
)
def test_malformed_frames_raise(raw: str) -> None:
    with pytest.raises(KlineDecodeError):
        decode_message(raw)


def test_missing_fields_are_named() -> None:
    frame = _frame()
    del frame["k"]["v"]  # type: ignore[attr-defined]
    with pytest.raises(KlineDecodeError, match="'v'"):
        decode_message(json.dumps(frame))

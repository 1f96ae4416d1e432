from __future__ import annotations

import json
from typing import Any

from klinewatch.domain.models import Bar, BarUpdate

KLINE_EVENT_TYPE = "continuous_kline"


class KlineDecodeError(ValueError):
    """Raised when a stream frame cannot be turned into a bar update."""


def decode_message(raw: str | bytes) -> BarUpdate | None:
    """Decode one stream frame.

    Returns ``None`` for frames of other event types.
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise KlineDecodeError(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise KlineDecodeError("frame must be a JSON object")
    if message.get("e") != KLINE_EVENT_TYPE:
        return None
    return kline_payload_to_update(message.get("k"))


def kline_payload_to_update(payload: Any) -> BarUpdate:
    if not isinstance(payload, dict):
        raise KlineDecodeError("kline payload must be a JSON object")
    missing = {"t", "o", "h", "l", "c", "v", "x"}.difference(payload)
    if missing:
        raise KlineDecodeError(f"kline payload missing fields: {sorted(missing)}")
    closed = payload["x"]
    if not isinstance(closed, bool):
        raise KlineDecodeError("kline closed flag must be a boolean")
    try:
        bar = Bar(
            time=int(payload["t"]),
            open=float(payload["o"]),
            high=float(payload["h"]),
            low=float(payload["l"]),
            close=float(payload["c"]),
            volume=float(payload["v"]),
        )
    except (TypeError, ValueError) as exc:
        raise KlineDecodeError(f"kline payload contains non-numeric value: {exc}") from exc
    return BarUpdate(bar=bar, is_closed=closed)

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from klinewatch.data.base import HistoryProvider
from klinewatch.domain.models import Bar, Interval

logger = logging.getLogger(__name__)

DEFAULT_REST_BASE_URL = "https://fapi.binance.com/fapi/v1/continuousKlines"


class HttpTransport(Protocol):
    def get_json(
        self,
        url: str,
        params: dict[str, str],
        headers: dict[str, str],
        timeout_seconds: float,
    ) -> Any: ...


class UrllibHttpTransport:
    def get_json(
        self,
        url: str,
        params: dict[str, str],
        headers: dict[str, str],
        timeout_seconds: float,
    ) -> Any:
        query = urllib_parse.urlencode(params)
        req = urllib_request.Request(
            url=f"{url}?{query}" if query else url,
            method="GET",
            headers=dict(headers),
        )
        with urllib_request.urlopen(req, timeout=timeout_seconds) as resp:
            content = resp.read().decode("utf-8")
        return json.loads(content)


class BinanceHistoryLoader(HistoryProvider):
    """Backfill loader for continuous-contract klines.

    Failures never propagate: a transport or payload error is logged and an
    empty list is returned, since the live stream can populate an empty window.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REST_BASE_URL,
        contract_type: str = "perpetual",
        timeout_seconds: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url must be non-empty")
        if not contract_type.strip():
            raise ValueError("contract_type must be non-empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")

        self.base_url = base_url
        self.contract_type = contract_type
        self.timeout_seconds = timeout_seconds
        self.headers = dict(headers or {})
        self.transport: HttpTransport = transport or UrllibHttpTransport()

    def request_params(self, instrument: str, interval: Interval, count: int) -> dict[str, str]:
        return {
            "pair": instrument.strip().upper(),
            "contractType": self.contract_type.upper(),
            "interval": Interval(interval).value,
            "limit": str(count),
        }

    def fetch_history(self, instrument: str, interval: Interval, count: int) -> list[Bar]:
        if not instrument.strip():
            raise ValueError("instrument must be non-empty")
        if count <= 0:
            raise ValueError("count must be greater than zero")

        params = self.request_params(instrument, interval, count)
        try:
            payload = self.transport.get_json(
                self.base_url,
                params=params,
                headers=self.headers,
                timeout_seconds=self.timeout_seconds,
            )
        except Exception:
            logger.exception(
                "History request failed for pair=%s interval=%s",
                params["pair"],
                params["interval"],
            )
            return []

        if not isinstance(payload, list):
            logger.error(
                "History response for pair=%s is not a list: %s",
                params["pair"],
                type(payload).__name__,
            )
            return []

        bars = parse_klines(payload)
        if len(bars) > count:
            bars = bars[-count:]
        logger.info(
            "Loaded %s historical bars for pair=%s interval=%s",
            len(bars),
            params["pair"],
            params["interval"],
        )
        return bars


def parse_klines(rows: Sequence[object]) -> list[Bar]:
    """Map ``[openTime, open, high, low, close, volume, ...]`` rows to bars.

    Malformed rows and rows that would break ascending time order are skipped.
    """
    bars: list[Bar] = []
    for index, row in enumerate(rows):
        try:
            bar = kline_row_to_bar(row)
        except ValueError as exc:
            logger.warning("Skipping malformed kline row %s: %s", index, exc)
            continue
        if bars and bar.time <= bars[-1].time:
            logger.warning(
                "Skipping out-of-order kline row %s: time=%s after time=%s",
                index,
                bar.time,
                bars[-1].time,
            )
            continue
        bars.append(bar)
    return bars


def kline_row_to_bar(row: object) -> Bar:
    if not isinstance(row, (list, tuple)) or len(row) < 6:
        raise ValueError("kline row must be an array with at least 6 fields")
    try:
        return Bar(
            time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"kline row contains non-numeric value: {exc}") from exc

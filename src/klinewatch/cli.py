from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from klinewatch.config import Settings
from klinewatch.data.binance import BinanceHistoryLoader
from klinewatch.domain.models import Interval
from klinewatch.indicators import MovingAverageKind
from klinewatch.logging_config import configure_logging
from klinewatch.session import create_session
from klinewatch.strategies.momentum import CrossoverConfig, MovingAverageCrossStrategy
from klinewatch.window import bars_to_frame

logger = logging.getLogger(__name__)

INTERVAL_CHOICES = [interval.value for interval in Interval]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="KlineWatch CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    history = subparsers.add_parser("history", help="Download historical klines")
    history.add_argument("--symbol", default=None)
    history.add_argument("--interval", choices=INTERVAL_CHOICES, default=None)
    history.add_argument("--limit", type=int, default=None)
    history.add_argument("--output", default=None)

    scan = subparsers.add_parser("scan", help="Scan historical klines for MA crossovers")
    scan.add_argument("--symbol", default=None)
    scan.add_argument("--interval", choices=INTERVAL_CHOICES, default=None)
    scan.add_argument("--limit", type=int, default=None)
    scan.add_argument("--fast", type=int, default=None)
    scan.add_argument("--slow", type=int, default=None)
    scan.add_argument("--kind", choices=[k.value for k in MovingAverageKind], default=None)

    watch = subparsers.add_parser("watch", help="Follow the live stream and report signals")
    watch.add_argument("--symbol", default=None)
    watch.add_argument("--interval", choices=INTERVAL_CHOICES, default=None)
    watch.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Seconds to run before exiting (default: until interrupted)",
    )

    serve = subparsers.add_parser("serve", help="Run the read-only HTTP/WebSocket API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _loader(settings: Settings) -> BinanceHistoryLoader:
    return BinanceHistoryLoader(
        base_url=settings.rest_base_url,
        contract_type=settings.contract_type,
        timeout_seconds=settings.http_timeout_seconds,
    )


def _context(args: argparse.Namespace, settings: Settings) -> tuple[str, Interval]:
    symbol = (args.symbol or settings.default_symbol).strip()
    if not symbol:
        raise SystemExit("symbol must be non-empty")
    interval = Interval(args.interval or settings.default_interval)
    return symbol, interval


def _limit(args: argparse.Namespace, settings: Settings) -> int:
    limit = settings.window_capacity if args.limit is None else args.limit
    if limit <= 0:
        raise SystemExit("limit must be greater than zero")
    return limit


def _handle_history(args: argparse.Namespace, settings: Settings) -> int:
    symbol, interval = _context(args, settings)
    bars = _loader(settings).fetch_history(symbol, interval, _limit(args, settings))

    payload: dict[str, object] = {
        "symbol": symbol,
        "interval": interval.value,
        "rows": len(bars),
        "first_time": bars[0].time if bars else None,
        "last_time": bars[-1].time if bars else None,
    }
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        bars_to_frame(bars).to_csv(output)
        logger.info("Saved %s rows to %s", len(bars), output)
        payload["output"] = str(output)
    print(json.dumps(payload))
    return 0


def _handle_scan(args: argparse.Namespace, settings: Settings) -> int:
    symbol, interval = _context(args, settings)
    fast = settings.fast_period if args.fast is None else args.fast
    slow = settings.slow_period if args.slow is None else args.slow
    if fast <= 0 or slow <= 0:
        raise SystemExit("fast and slow must be greater than zero")
    if fast >= slow:
        raise SystemExit("fast must be < slow")

    bars = _loader(settings).fetch_history(symbol, interval, _limit(args, settings))
    strategy = MovingAverageCrossStrategy(
        CrossoverConfig(
            fast_period=fast,
            slow_period=slow,
            kind=MovingAverageKind(args.kind or settings.ma_kind),
        )
    )
    signals = strategy.crossovers(bars_to_frame(bars)) if bars else []

    payload = {
        "symbol": symbol,
        "interval": interval.value,
        "rows": len(bars),
        "fast": fast,
        "slow": slow,
        "signals": [signal.as_dict() for signal in signals],
    }
    print(json.dumps(payload))
    return 0


async def _watch(
    symbol: str,
    interval: Interval,
    duration: float | None,
    settings: Settings,
) -> dict[str, object]:
    session = create_session(settings)
    try:
        await session.switch(symbol, interval)
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await session.close()

    snapshot = session.snapshot()
    last = snapshot.window[-1] if snapshot.window else None
    return {
        "symbol": symbol,
        "interval": interval.value,
        "bars": len(snapshot.window),
        "last_time": last.time if last is not None else None,
        "last_close": last.close if last is not None else None,
        "signals": [signal.as_dict() for signal in snapshot.signals],
    }


def _handle_watch(args: argparse.Namespace, settings: Settings) -> int:
    symbol, interval = _context(args, settings)
    if args.duration is not None and args.duration <= 0:
        raise SystemExit("duration must be greater than zero")
    try:
        payload = asyncio.run(_watch(symbol, interval, args.duration, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    print(json.dumps(payload))
    return 0


def _handle_serve(args: argparse.Namespace) -> int:
    from klinewatch.web.app import run

    run(host=args.host, port=args.port)
    return 0


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    parser = _build_parser()
    args = parser.parse_args()

    try:
        if args.command == "history":
            raise SystemExit(_handle_history(args, settings))
        if args.command == "scan":
            raise SystemExit(_handle_scan(args, settings))
        if args.command == "watch":
            raise SystemExit(_handle_watch(args, settings))
        if args.command == "serve":
            raise SystemExit(_handle_serve(args))
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    raise SystemExit("Unknown command")


if __name__ == "__main__":
    main()

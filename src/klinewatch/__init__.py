from klinewatch.config import Settings
from klinewatch.data.binance import BinanceHistoryLoader
from klinewatch.domain.models import Bar, BarUpdate, ConnectionState, Direction, Interval, Signal
from klinewatch.indicators import (
    MovingAverageKind,
    exponential_moving_average,
    moving_average,
    simple_moving_average,
)
from klinewatch.session import MarketSession, SessionSnapshot, create_session
from klinewatch.signals import CrossoverDetector, SignalStore, detect
from klinewatch.streaming.client import ReconnectPolicy, StreamClient
from klinewatch.window import ApplyOutcome, SlidingWindowBuffer

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "Bar",
    "BarUpdate",
    "Signal",
    "Direction",
    "Interval",
    "ConnectionState",
    "BinanceHistoryLoader",
    "StreamClient",
    "ReconnectPolicy",
    "SlidingWindowBuffer",
    "ApplyOutcome",
    "MovingAverageKind",
    "simple_moving_average",
    "exponential_moving_average",
    "moving_average",
    "CrossoverDetector",
    "SignalStore",
    "detect",
    "MarketSession",
    "SessionSnapshot",
    "create_session",
]

from klinewatch.data.base import HistoryProvider
from klinewatch.data.binance import BinanceHistoryLoader, HttpTransport, UrllibHttpTransport

__all__ = ["HistoryProvider", "BinanceHistoryLoader", "HttpTransport", "UrllibHttpTransport"]

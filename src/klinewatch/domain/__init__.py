from klinewatch.domain.models import Bar, BarUpdate, ConnectionState, Direction, Interval, Signal

__all__ = ["Bar", "BarUpdate", "ConnectionState", "Direction", "Interval", "Signal"]

from __future__ import annotations

from abc import ABC, abstractmethod

from klinewatch.domain.models import Bar, Interval


class HistoryProvider(ABC):
    @abstractmethod
    def fetch_history(self, instrument: str, interval: Interval, count: int) -> list[Bar]:
        """Return up to ``count`` closed bars in ascending time order."""

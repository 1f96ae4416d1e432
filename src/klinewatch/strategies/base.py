from __future__ import annotations

from abc import ABC, abstractmethod

import pandas as pd


class CrossoverStrategy(ABC):
    @abstractmethod
    def generate_signals(self, data: pd.DataFrame) -> pd.Series:
        """Return +1 (up-cross), -1 (down-cross) or 0 per row of data.close."""

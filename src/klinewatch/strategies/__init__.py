from klinewatch.strategies.base import CrossoverStrategy
from klinewatch.strategies.momentum import CrossoverConfig, MovingAverageCrossStrategy

__all__ = ["CrossoverStrategy", "CrossoverConfig", "MovingAverageCrossStrategy"]

from __future__ import annotations

from abc import ABC, abstractmethod

from engine.models import Candle


class HistoricalDataAdapter(ABC):
    name = "base"

    @abstractmethod
    async def fetch_candles(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> list[Candle]:
        """Time-ordered candles in [start_ms, end_ms]; raises DataUnavailable when there are none."""
        raise NotImplementedError

    @abstractmethod
    async def fetch_latest(self, symbol: str, timeframe: str, limit: int = 100) -> list[Candle]:
        raise NotImplementedError

from __future__ import annotations

import math
import random
import time

from adapters.base import HistoricalDataAdapter
from engine.errors import DataUnavailable
from engine.models import Candle
from services.scheduler import bar_open, next_bar_open, timeframe_ms


_BASE_PRICES = {
    "BTCUSDT": 43000.0,
    "ETHUSDT": 2600.0,
    "SOLUSDT": 100.0,
    "BNBUSDT": 310.0,
    "EURUSD": 1.09,
    "GBPUSD": 1.27,
}
_MAX_BARS = 100_000


def symbol_volatility(symbol: str) -> float:
    if "USDT" in symbol:
        return 0.02
    if "USD" in symbol:
        return 0.005
    return 0.015


def market_trend(ts_ms: int) -> float:
    hours = ts_ms / 1000 / 3600
    return math.sin(hours / 24) * 0.5 + math.sin(hours / (24 * 7)) * 0.3


class SimulatedDataAdapter(HistoricalDataAdapter):
    """Seeded random walk; the same seed, symbol and range always give the same candles."""

    name = "simulation"

    def __init__(self, seed: int = 42, base_volume: float = 1000.0) -> None:
        self.seed = seed
        self.base_volume = base_volume

    def _base_price(self, symbol: str, rng: random.Random) -> float:
        return _BASE_PRICES.get(symbol, rng.uniform(10.0, 500.0))

    def generate(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> list[Candle]:
        step = timeframe_ms(timeframe)
        first = next_bar_open(start_ms, timeframe)
        rng = random.Random(f"{self.seed}:{symbol}:{timeframe}:{first}")
        vol = symbol_volatility(symbol)
        price = self._base_price(symbol, rng)

        candles: list[Candle] = []
        ts = first
        while ts <= end_ms and len(candles) < _MAX_BARS:
            noise = rng.uniform(-1.0, 1.0)
            change = price * vol * (market_trend(ts) + noise * 0.3) * 0.01
            close = max(0.0001, price + change)
            high = max(price, close) * (1 + rng.random() * 0.002)
            low = min(price, close) * (1 - rng.random() * 0.002)
            volume = self.base_volume * (0.8 + rng.random() * 0.4)
            candles.append(Candle(ts=ts, open=price, high=high, low=low, close=close, volume=volume))
            price = close
            ts += step
        return candles

    async def fetch_candles(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> list[Candle]:
        candles = self.generate(symbol, timeframe, start_ms, end_ms)
        if not candles:
            raise DataUnavailable(f"No historical data available for {symbol}", context={"symbol": symbol, "timeframe": timeframe})
        return candles

    async def fetch_latest(self, symbol: str, timeframe: str, limit: int = 100) -> list[Candle]:
        step = timeframe_ms(timeframe)
        end_ms = bar_open(int(time.time() * 1000), timeframe)
        return self.generate(symbol, timeframe, end_ms - (limit - 1) * step, end_ms)

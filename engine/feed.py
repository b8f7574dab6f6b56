from __future__ import annotations

from loguru import logger

from adapters.base import HistoricalDataAdapter
from engine.core import SignalEngine
from engine.models import Candle, Signal, Tick
from services.scheduler import wait_next_tick


def candle_to_tick(symbol: str, candle: Candle) -> Tick:
    return Tick(
        symbol=symbol,
        price=candle.close,
        volume=candle.volume,
        ts=candle.ts,
        high=candle.high,
        low=candle.low,
        open=candle.open,
    )


class PollingFeed:
    """Pushes the latest candle of every symbol into the engine at each timeframe boundary."""

    def __init__(self, adapter: HistoricalDataAdapter, engine: SignalEngine, symbols: list[str], timeframe: str) -> None:
        self.adapter = adapter
        self.engine = engine
        self.symbols = symbols
        self.timeframe = timeframe
        self._running = False

    async def prime(self, limit: int = 100) -> None:
        for symbol in self.symbols:
            try:
                candles = await self.adapter.fetch_latest(symbol, self.timeframe, limit=limit)
            except Exception as exc:
                logger.exception("Failed to prime {}: {}", symbol, exc)
                continue
            for candle in candles:
                await self.engine.on_tick(candle_to_tick(symbol, candle))
            logger.info("Primed {} with {} candles", symbol, len(candles))

    async def run_once(self) -> list[Signal]:
        signals: list[Signal] = []
        for symbol in self.symbols:
            try:
                candles = await self.adapter.fetch_latest(symbol, self.timeframe, limit=1)
                if not candles:
                    continue
                signals.extend(await self.engine.on_tick(candle_to_tick(symbol, candles[-1])))
            except Exception as exc:
                logger.exception("Feed error for {}: {}", symbol, exc)
        return signals

    async def run_forever(self) -> None:
        self._running = True
        while self._running:
            await self.run_once()
            await wait_next_tick(self.timeframe)

    def stop(self) -> None:
        self._running = False

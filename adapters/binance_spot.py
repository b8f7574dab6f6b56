from __future__ import annotations

import asyncio
from typing import Any

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException
from loguru import logger

from adapters.base import HistoricalDataAdapter
from engine.errors import DataUnavailable
from engine.models import Candle


_TIMEFRAME_MAP = {
    "1m": Client.KLINE_INTERVAL_1MINUTE,
    "3m": Client.KLINE_INTERVAL_3MINUTE,
    "5m": Client.KLINE_INTERVAL_5MINUTE,
    "15m": Client.KLINE_INTERVAL_15MINUTE,
    "30m": Client.KLINE_INTERVAL_30MINUTE,
    "1h": Client.KLINE_INTERVAL_1HOUR,
    "4h": Client.KLINE_INTERVAL_4HOUR,
    "1d": Client.KLINE_INTERVAL_1DAY,
}


def _to_candle(k: list[Any]) -> Candle:
    return Candle(
        ts=int(k[0]),
        open=float(k[1]),
        high=float(k[2]),
        low=float(k[3]),
        close=float(k[4]),
        volume=float(k[5]),
    )


class BinanceHistoricalAdapter(HistoricalDataAdapter):
    name = "binance"

    def __init__(self, api_key: str = "", api_secret: str = "", client: Client | None = None) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._client = client

    @property
    def client(self) -> Client:
        # Client() pings the exchange, so it is only built on first use
        if self._client is None:
            self._client = Client(self._api_key, self._api_secret)
        return self._client

    def _interval(self, timeframe: str) -> str:
        interval = _TIMEFRAME_MAP.get(timeframe)
        if not interval:
            raise ValueError(f"Unsupported timeframe: {timeframe}")
        return interval

    async def fetch_candles(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> list[Candle]:
        interval = self._interval(timeframe)
        try:
            klines = await asyncio.to_thread(
                self.client.get_historical_klines,
                symbol,
                interval,
                start_ms,
                end_ms,
            )
        except (BinanceAPIException, BinanceRequestException, OSError) as exc:
            raise DataUnavailable(
                f"Failed to fetch historical data for {symbol}",
                context={"symbol": symbol, "timeframe": timeframe},
            ) from exc
        candles = [_to_candle(k) for k in klines]
        logger.info("Fetched {} {} candles for {}", len(candles), timeframe, symbol)
        if not candles:
            raise DataUnavailable(f"No historical data available for {symbol}", context={"symbol": symbol, "timeframe": timeframe})
        return candles

    async def fetch_latest(self, symbol: str, timeframe: str, limit: int = 100) -> list[Candle]:
        interval = self._interval(timeframe)
        try:
            klines = await asyncio.to_thread(self.client.get_klines, symbol=symbol, interval=interval, limit=limit)
        except (BinanceAPIException, BinanceRequestException, OSError) as exc:
            raise DataUnavailable(f"Failed to fetch latest candles for {symbol}", context={"symbol": symbol}) from exc
        return [_to_candle(k) for k in klines]

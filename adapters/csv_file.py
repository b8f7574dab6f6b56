from __future__ import annotations

import asyncio
from pathlib import Path

import pandas as pd

from adapters.base import HistoricalDataAdapter
from engine.errors import DataUnavailable
from engine.models import Candle


_TS_COLUMNS = ("timestamp", "ts", "time", "open_time", "datetime", "date")


def _normalise_ts(series: pd.Series) -> pd.Series:
    if not pd.api.types.is_numeric_dtype(series):
        return pd.to_datetime(series, utc=True).dt.as_unit("ms").astype("int64")
    values = series.astype("int64")
    # second-resolution files are widened to milliseconds
    if len(values) and values.abs().max() < 10**11:
        values = values * 1000
    return values


def load_candles(csv_path: str | Path) -> list[Candle]:
    df = pd.read_csv(csv_path)
    df.columns = df.columns.str.lower().str.strip()
    ts_column = next((c for c in _TS_COLUMNS if c in df.columns), None)
    missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
    if ts_column is None or missing:
        raise DataUnavailable(f"CSV is missing required columns: {missing or ['timestamp']}", context={"path": str(csv_path)})
    try:
        df["_ts"] = _normalise_ts(df[ts_column])
    except (ValueError, TypeError) as exc:
        raise DataUnavailable(f"Unreadable timestamps in column '{ts_column}'", context={"path": str(csv_path)}) from exc
    if "volume" not in df.columns:
        df["volume"] = 0.0
    df = df.sort_values("_ts")
    return [
        Candle(
            ts=int(row["_ts"]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]),
        )
        for _, row in df.iterrows()
    ]


class CsvDataAdapter(HistoricalDataAdapter):
    """Candles from a CSV file, or from `<SYMBOL>_<timeframe>.csv` files in a directory."""

    name = "csv"

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def _file_for(self, symbol: str, timeframe: str) -> Path:
        if self.path.is_dir():
            return self.path / f"{symbol}_{timeframe}.csv"
        return self.path

    async def _load(self, symbol: str, timeframe: str) -> list[Candle]:
        csv_path = self._file_for(symbol, timeframe)
        if not csv_path.exists():
            raise DataUnavailable(f"No CSV data for {symbol}", context={"symbol": symbol, "path": str(csv_path)})
        return await asyncio.to_thread(load_candles, csv_path)

    async def fetch_candles(self, symbol: str, timeframe: str, start_ms: int, end_ms: int) -> list[Candle]:
        candles = [c for c in await self._load(symbol, timeframe) if start_ms <= c.ts <= end_ms]
        if not candles:
            raise DataUnavailable(f"No historical data available for {symbol}", context={"symbol": symbol, "timeframe": timeframe})
        return candles

    async def fetch_latest(self, symbol: str, timeframe: str, limit: int = 100) -> list[Candle]:
        return (await self._load(symbol, timeframe))[-limit:]

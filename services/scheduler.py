from __future__ import annotations

import asyncio
import time


_TIMEFRAME_MS = {
    "1m": 60_000,
    "3m": 180_000,
    "5m": 300_000,
    "15m": 900_000,
    "30m": 1_800_000,
    "1h": 3_600_000,
    "4h": 14_400_000,
    "1d": 86_400_000,
}


def timeframe_ms(tf: str) -> int:
    if tf not in _TIMEFRAME_MS:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return _TIMEFRAME_MS[tf]


def supported_timeframes() -> tuple[str, ...]:
    return tuple(_TIMEFRAME_MS)


def bar_open(ts_ms: int, tf: str) -> int:
    """Open time of the bar containing `ts_ms`."""
    step = timeframe_ms(tf)
    return ts_ms // step * step


def next_bar_open(ts_ms: int, tf: str) -> int:
    """First bar boundary at or after `ts_ms`."""
    step = timeframe_ms(tf)
    return -(-ts_ms // step) * step


async def wait_next_tick(tf: str) -> float:
    now_ms = int(time.time() * 1000)
    delay = (bar_open(now_ms, tf) + timeframe_ms(tf) - now_ms) / 1000
    await asyncio.sleep(delay)
    return delay

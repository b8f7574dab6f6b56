"""Technical indicators over trailing price windows.

Every function is pure and tolerant of short input: when the window is too
small for the requested period it returns a documented neutral value instead
of raising or producing NaN.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np


@dataclass(frozen=True)
class MACD:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class Stochastic:
    k: float
    d: float


@dataclass(frozen=True)
class Supertrend:
    value: float
    direction: Literal["UP", "DOWN"]


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _last(values: np.ndarray) -> float:
    return float(values[-1]) if len(values) else 0.0


def sma(prices: Sequence[float], period: int) -> float:
    values = _as_array(prices)
    if period <= 0 or len(values) < period:
        return _last(values)
    return float(values[-period:].mean())


def ema_series(prices: Sequence[float], period: int) -> np.ndarray:
    """EMA seeded with the SMA of the first `period` values.

    The result starts at index `period - 1` of the input, so it has
    `len(prices) - period + 1` entries. Short input is returned unchanged.
    """
    values = _as_array(prices)
    if period <= 0 or len(values) < period:
        return values.copy()
    k = 2.0 / (period + 1)
    out = np.empty(len(values) - period + 1)
    out[0] = values[:period].mean()
    for i, price in enumerate(values[period:], start=1):
        out[i] = (price - out[i - 1]) * k + out[i - 1]
    return out


def ema(prices: Sequence[float], period: int) -> float:
    values = _as_array(prices)
    if period <= 0 or len(values) < period:
        return _last(values)
    return float(ema_series(values, period)[-1])


def rsi(prices: Sequence[float], period: int = 14) -> float:
    values = _as_array(prices)
    if period <= 0 or len(values) < period + 1:
        return 50.0
    changes = np.diff(values)[-period:]
    avg_gain = float(np.clip(changes, 0, None).sum()) / period
    avg_loss = float(np.clip(-changes, 0, None).sum()) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def macd(prices: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9, legacy: bool = False) -> MACD:
    """MACD line, signal line and histogram.

    The signal line is the `signal`-period EMA of the MACD series. With
    `legacy=True` it is approximated as `macd * 0.8`, which reproduces the
    numbers of the previous dashboard engines.
    """
    values = _as_array(prices)
    if fast <= 0 or slow <= fast or signal <= 0 or len(values) < slow:
        return MACD(0.0, 0.0, 0.0)
    fast_line = ema_series(values, fast)[slow - fast:]
    slow_line = ema_series(values, slow)
    macd_line = fast_line - slow_line
    value = float(macd_line[-1])
    signal_value = value * 0.8 if legacy else ema(macd_line, signal)
    return MACD(value, signal_value, value - signal_value)


def vwap(prices: Sequence[float], volumes: Sequence[float]) -> float:
    p = _as_array(prices)
    v = _as_array(volumes)
    if len(p) == 0 or len(p) != len(v):
        return 0.0
    total_volume = float(v.sum())
    if total_volume <= 0:
        return _last(p)
    return float((p * v).sum()) / total_volume


def _true_ranges(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray) -> np.ndarray:
    prev_close = closes[:-1]
    return np.maximum.reduce(
        [
            highs[1:] - lows[1:],
            np.abs(highs[1:] - prev_close),
            np.abs(lows[1:] - prev_close),
        ]
    )


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14) -> float:
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    n = min(len(h), len(l), len(c))
    if n < 2 or period <= 0:
        return 0.0
    tr = _true_ranges(h[-n:], l[-n:], c[-n:])
    return float(tr[-period:].mean())


def bollinger_bands(prices: Sequence[float], period: int = 20, std_dev: float = 2.0) -> BollingerBands:
    values = _as_array(prices)
    if period <= 0 or len(values) < period:
        price = _last(values)
        return BollingerBands(price, price, price)
    window = values[-period:]
    middle = float(window.mean())
    deviation = float(window.std())
    return BollingerBands(middle + deviation * std_dev, middle, middle - deviation * std_dev)


def _percent_k(highs: np.ndarray, lows: np.ndarray, close: float) -> float:
    highest, lowest = float(highs.max()), float(lows.min())
    if highest == lowest:
        return 50.0
    return (close - lowest) / (highest - lowest) * 100.0


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    k_period: int = 14,
    d_period: int = 3,
    legacy: bool = False,
) -> Stochastic:
    """%K over the window and %D as the SMA of the last `d_period` %K values."""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    n = min(len(h), len(l), len(c))
    if n < k_period or k_period <= 0:
        return Stochastic(50.0, 50.0)
    h, l, c = h[-n:], l[-n:], c[-n:]
    k = _percent_k(h[-k_period:], l[-k_period:], float(c[-1]))
    if legacy:
        return Stochastic(k, k * 0.8)
    ks = []
    for offset in range(min(d_period, n - k_period + 1)):
        end = n - offset
        ks.append(_percent_k(h[end - k_period:end], l[end - k_period:end], float(c[end - 1])))
    return Stochastic(k, sum(ks) / len(ks))


def williams_r(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14) -> float:
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if min(len(h), len(l), len(c)) < period or period <= 0:
        return -50.0
    highest, lowest = float(h[-period:].max()), float(l[-period:].min())
    if highest == lowest:
        return -50.0
    return (highest - float(c[-1])) / (highest - lowest) * -100.0


def cci(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 20) -> float:
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    n = min(len(h), len(l), len(c))
    if n < period or period <= 0:
        return 0.0
    typical = (h[-period:] + l[-period:] + c[-period:]) / 3.0
    mean = float(typical.mean())
    mean_deviation = float(np.abs(typical - mean).mean())
    if mean_deviation == 0:
        return 0.0
    return (float(typical[-1]) - mean) / (0.015 * mean_deviation)


def supertrend(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 10,
    multiplier: float = 3.0,
) -> Supertrend:
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    n = min(len(h), len(l), len(c))
    if n < period or period <= 0:
        return Supertrend(_last(c), "UP")
    h, l, c = h[-n:], l[-n:], c[-n:]

    upper = lower = 0.0
    direction: Literal["UP", "DOWN"] = "UP"
    for i in range(period - 1, n):
        band = multiplier * atr(h[: i + 1], l[: i + 1], c[: i + 1], period)
        hl2 = (h[i] + l[i]) / 2.0
        basic_upper, basic_lower = hl2 + band, hl2 - band
        if i == period - 1:
            upper, lower = basic_upper, basic_lower
            direction = "UP" if c[i] >= lower else "DOWN"
            continue
        prev_close = c[i - 1]
        upper = basic_upper if basic_upper < upper or prev_close > upper else upper
        lower = basic_lower if basic_lower > lower or prev_close < lower else lower
        if direction == "UP" and c[i] < lower:
            direction = "DOWN"
        elif direction == "DOWN" and c[i] > upper:
            direction = "UP"
    return Supertrend(float(lower if direction == "UP" else upper), direction)


def volatility(closes: Sequence[float], window: int = 20) -> float:
    """Root mean square of simple returns over the last `window` closes."""
    values = _as_array(closes)
    if len(values) < window or window < 2:
        return 0.02
    recent = values[-window:]
    prev, cur = recent[:-1], recent[1:]
    mask = prev != 0
    if not mask.any():
        return 0.0
    returns = (cur[mask] - prev[mask]) / prev[mask]
    return math.sqrt(float((returns * returns).mean()))


def average_volume(volumes: Sequence[float], periods: int = 20) -> float:
    values = _as_array(volumes)
    if periods <= 0 or len(values) < periods:
        return 0.0
    return float(values[-periods:].mean())


def support_resistance(highs: Sequence[float], lows: Sequence[float], period: int = 20) -> tuple[float, float]:
    """Lowest low and highest high of the bars before the current one."""
    h, l = _as_array(highs), _as_array(lows)
    n = min(len(h), len(l))
    if n < 2:
        return _last(l), _last(h)
    prior_h, prior_l = h[-n:-1][-period:], l[-n:-1][-period:]
    return float(prior_l.min()), float(prior_h.max())

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Sequence

from engine.models import Candle
from indicators import technical as ta

_ALIASES = {
    "macd": "macd.macd",
    "macd_signal": "macd.signal",
    "macd_histogram": "macd.histogram",
    "stochastic": "stochastic.k",
    "stochastic_d": "stochastic.d",
    "supertrend": "supertrend.value",
    "supertrend_direction": "supertrend.direction",
    "williamsR": "williams_r",
    "close": "price",
}


@dataclass(frozen=True)
class IndicatorSnapshot:
    price: float
    volume: float
    ema9: float
    ema21: float
    sma20: float
    rsi: float
    macd: ta.MACD
    vwap: float
    atr: float
    bollinger: ta.BollingerBands
    stochastic: ta.Stochastic
    williams_r: float
    cci: float
    supertrend: ta.Supertrend
    volatility: float
    avg_volume: float
    support: float
    resistance: float

    def value(self, name: str) -> float | str | None:
        path = _ALIASES.get(name, name)
        current: Any = self
        for part in path.split("."):
            if not hasattr(current, part):
                return None
            current = getattr(current, part)
        if isinstance(current, (int, float, str)):
            return current
        return None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_snapshot(candles: Sequence[Candle], legacy: bool = False) -> IndicatorSnapshot:
    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    volumes = [c.volume for c in candles]
    support, resistance = ta.support_resistance(highs, lows)
    return IndicatorSnapshot(
        price=closes[-1] if closes else 0.0,
        volume=volumes[-1] if volumes else 0.0,
        ema9=ta.ema(closes, 9),
        ema21=ta.ema(closes, 21),
        sma20=ta.sma(closes, 20),
        rsi=ta.rsi(closes),
        macd=ta.macd(closes, legacy=legacy),
        vwap=ta.vwap(closes, volumes),
        atr=ta.atr(highs, lows, closes),
        bollinger=ta.bollinger_bands(closes),
        stochastic=ta.stochastic(highs, lows, closes, legacy=legacy),
        williams_r=ta.williams_r(highs, lows, closes),
        cci=ta.cci(highs, lows, closes),
        supertrend=ta.supertrend(highs, lows, closes),
        volatility=ta.volatility(closes),
        avg_volume=ta.average_volume(volumes),
        support=support,
        resistance=resistance,
    )

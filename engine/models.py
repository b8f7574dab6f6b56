from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Side = Literal["LONG", "SHORT", "FLAT"]
TradeSide = Literal["LONG", "SHORT"]


@dataclass(frozen=True)
class Candle:
    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Tick:
    symbol: str
    price: float
    volume: float
    ts: int
    high: float | None = None
    low: float | None = None
    open: float | None = None


@dataclass(frozen=True)
class EnhancedTick:
    symbol: str
    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    spread: float
    mid_price: float
    liquidity: float
    volatility: float
    validated: bool

    def as_candle(self) -> Candle:
        return Candle(ts=self.ts, open=self.open, high=self.high, low=self.low, close=self.close, volume=self.volume)


@dataclass(frozen=True)
class PriceValidation:
    symbol: str
    expected_price: float
    actual_price: float
    discrepancy: float
    ts: int
    source: str = "internal_validation"


@dataclass(frozen=True)
class Signal:
    id: str
    symbol: str
    side: Side
    confidence: float
    price: float
    ts: int
    strategy_id: str
    reasons: tuple[str, ...] = ()
    stop_loss: float | None = None
    take_profit: float | None = None
    time_horizon: Literal["scalp", "intraday", "swing"] = "intraday"
    risk: float = 0.0
    indicators: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class Trade:
    id: str
    symbol: str
    side: TradeSide
    entry_time: int
    entry_price: float
    quantity: float
    commission: float
    slippage: float
    reason: str
    stop_loss: float | None = None
    take_profit: float | None = None
    exit_time: int | None = None
    exit_price: float | None = None
    exit_reason: str | None = None
    pnl: float | None = None
    pnl_percent: float | None = None
    duration_ms: int | None = None
    bars_held: int = 0
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.exit_time is None


@dataclass
class PortfolioPosition:
    id: str
    symbol: str
    side: TradeSide
    entry_price: float
    current_price: float
    quantity: float
    entry_time: int
    strategy_id: str
    stop_loss: float | None = None
    take_profit: float | None = None
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    exit_time: int | None = None
    exit_reason: str | None = None


@dataclass
class PortfolioStats:
    total_value: float
    total_pnl: float
    total_pnl_percent: float
    day_pnl: float
    day_pnl_percent: float
    open_positions: int
    closed_positions: int
    win_rate: float
    avg_win: float
    avg_loss: float
    sharpe_ratio: float
    max_drawdown: float

"""Performance statistics for a list of closed trades.

Every function here is pure and returns 0.0 rather than NaN or infinity when
its input is empty or a denominator is zero. The one exception is the Sortino
ratio, which is undefined (``None``) when there are no downside returns.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd

from engine.models import Trade

TRADING_DAYS = 252
_HOUR_MS = 3_600_000
_DAY_MS = 86_400_000
_DAYS_PER_MONTH = 365.25 / 12


@dataclass(frozen=True)
class EquityPoint:
    ts: int
    equity: float
    drawdown: float
    returns: float


@dataclass(frozen=True)
class DrawdownPoint:
    ts: int
    drawdown: float
    duration_ms: int
    is_active: bool


@dataclass(frozen=True)
class MonthlyReturn:
    year: int
    month: int
    returns: float
    trades: int


@dataclass(frozen=True)
class RiskMetrics:
    var95: float
    var99: float
    cvar95: float
    downside_deviation: float
    upside_deviation: float


@dataclass(frozen=True)
class TradeAnalysis:
    avg_trade_duration_h: float
    median_trade_duration_h: float
    longest_trade_h: float
    shortest_trade_h: float
    max_consecutive_wins: int
    max_consecutive_losses: int
    avg_bars_in_trade: float
    trades_per_month: float
    best_month: MonthlyReturn
    worst_month: MonthlyReturn


@dataclass(frozen=True)
class PerformanceMetrics:
    total_return: float = 0.0
    annualized_return: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    break_even_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float | None = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_duration_ms: int = 0
    recovery_factor: float = 0.0
    payoff_ratio: float = 0.0
    exposure_time: float = 0.0


_EMPTY_MONTH = MonthlyReturn(year=0, month=0, returns=0.0, trades=0)


def closed_trades(trades: Sequence[Trade]) -> list[Trade]:
    closed = [t for t in trades if t.pnl is not None and t.exit_time is not None]
    return sorted(closed, key=lambda t: t.exit_time)


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.02) -> float:
    if len(returns) == 0:
        return 0.0
    values = np.asarray(returns, dtype=float)
    sigma = float(values.std())
    if sigma == 0:
        return 0.0
    return (float(values.mean()) * TRADING_DAYS - risk_free_rate) / (sigma * math.sqrt(TRADING_DAYS))


def sortino_ratio(returns: Sequence[float], risk_free_rate: float = 0.02) -> float | None:
    if len(returns) == 0:
        return 0.0
    values = np.asarray(returns, dtype=float)
    downside = values[values < 0]
    if downside.size == 0:
        return None
    deviation = math.sqrt(float((downside**2).sum()) / values.size * TRADING_DAYS)
    if deviation == 0:
        return 0.0
    return (float(values.mean()) * TRADING_DAYS - risk_free_rate) / deviation


def max_drawdown(equity: Sequence[EquityPoint]) -> tuple[float, int]:
    """Largest peak-to-trough fall as a fraction, and the longest time spent below a peak."""
    if not equity:
        return 0.0, 0
    peak = equity[0].equity
    peak_ts = equity[0].ts
    worst = 0.0
    longest = 0
    underwater = False
    for point in equity[1:]:
        if point.equity >= peak:
            if underwater:
                longest = max(longest, point.ts - peak_ts)
                underwater = False
            peak = point.equity
            peak_ts = point.ts
            continue
        underwater = True
        if peak > 0:
            worst = max(worst, min(1.0, (peak - point.equity) / peak))
    if underwater:
        longest = max(longest, equity[-1].ts - peak_ts)
    return worst, longest


def calmar_ratio(annualized: float, drawdown: float) -> float:
    return annualized / drawdown if drawdown > 0 else 0.0


def value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    if len(returns) == 0:
        return 0.0
    ordered = sorted(returns)
    index = min(len(ordered) - 1, int(math.floor((1 - confidence) * len(ordered))))
    return abs(ordered[index])


def conditional_value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    if len(returns) == 0:
        return 0.0
    ordered = sorted(returns)
    index = min(len(ordered) - 1, int(math.floor((1 - confidence) * len(ordered))))
    tail = ordered[: index + 1]
    return abs(sum(tail) / len(tail))


def annualized_return(total_return: float, days: float) -> float:
    if days <= 0:
        return 0.0
    if total_return <= -1:
        return -1.0
    exponent = math.log1p(total_return) * 365.0 / days
    # keep extreme short-range extrapolations finite
    return math.exp(min(exponent, 700.0)) - 1.0


def equity_curve(trades: Sequence[Trade], initial_capital: float, start_ms: int) -> list[EquityPoint]:
    points = [EquityPoint(ts=start_ms, equity=initial_capital, drawdown=0.0, returns=0.0)]
    equity = initial_capital
    peak = initial_capital
    for trade in closed_trades(trades):
        equity += trade.pnl
        peak = max(peak, equity)
        drawdown = min(1.0, (peak - equity) / peak) if peak > 0 else 0.0
        returns = (equity - initial_capital) / initial_capital if initial_capital > 0 else 0.0
        points.append(EquityPoint(ts=trade.exit_time, equity=equity, drawdown=drawdown, returns=returns))
    return points


def drawdown_curve(equity: Sequence[EquityPoint]) -> list[DrawdownPoint]:
    curve: list[DrawdownPoint] = []
    peak_ts = equity[0].ts if equity else 0
    for point in equity:
        if point.drawdown <= 0:
            peak_ts = point.ts
        curve.append(
            DrawdownPoint(
                ts=point.ts,
                drawdown=point.drawdown,
                duration_ms=point.ts - peak_ts,
                is_active=point.drawdown > 0,
            )
        )
    return curve


def monthly_returns(trades: Sequence[Trade]) -> list[MonthlyReturn]:
    closed = [t for t in closed_trades(trades) if t.pnl_percent is not None]
    if not closed:
        return []
    df = pd.DataFrame(
        {
            "exit": pd.to_datetime([t.exit_time for t in closed], unit="ms", utc=True),
            "pnl_percent": [t.pnl_percent for t in closed],
        }
    )
    keys = [df["exit"].dt.year.rename("year"), df["exit"].dt.month.rename("month")]
    grouped = df.groupby(keys)["pnl_percent"].agg(["sum", "count"])
    return [
        MonthlyReturn(year=int(year), month=int(month), returns=float(row["sum"]), trades=int(row["count"]))
        for (year, month), row in grouped.iterrows()
    ]


def _period_returns(equity: Sequence[EquityPoint]) -> list[float]:
    returns = []
    for prev, point in zip(equity, equity[1:]):
        returns.append((point.equity - prev.equity) / prev.equity if prev.equity > 0 else 0.0)
    return returns


def risk_metrics(equity: Sequence[EquityPoint]) -> RiskMetrics:
    returns = _period_returns(equity)
    if not returns:
        return RiskMetrics(0.0, 0.0, 0.0, 0.0, 0.0)
    n = len(returns)
    downside = math.sqrt(sum(r * r for r in returns if r < 0) / n)
    upside = math.sqrt(sum(r * r for r in returns if r > 0) / n)
    return RiskMetrics(
        var95=value_at_risk(returns, 0.95),
        var99=value_at_risk(returns, 0.99),
        cvar95=conditional_value_at_risk(returns, 0.95),
        downside_deviation=downside,
        upside_deviation=upside,
    )


def _streaks(trades: Sequence[Trade]) -> tuple[int, int]:
    wins = losses = best_wins = best_losses = 0
    for trade in trades:
        if trade.pnl > 0:
            wins, losses = wins + 1, 0
        elif trade.pnl < 0:
            wins, losses = 0, losses + 1
        else:
            wins = losses = 0
        best_wins = max(best_wins, wins)
        best_losses = max(best_losses, losses)
    return best_wins, best_losses


def analyze_trades(trades: Sequence[Trade], months: Sequence[MonthlyReturn], start_ms: int, end_ms: int) -> TradeAnalysis:
    closed = [t for t in closed_trades(trades) if t.duration_ms is not None]
    if not closed:
        return TradeAnalysis(0.0, 0.0, 0.0, 0.0, 0, 0, 0.0, 0.0, _EMPTY_MONTH, _EMPTY_MONTH)

    durations = np.asarray([t.duration_ms for t in closed], dtype=float) / _HOUR_MS
    wins, losses = _streaks(closed)
    span_months = (end_ms - start_ms) / _DAY_MS / _DAYS_PER_MONTH
    return TradeAnalysis(
        avg_trade_duration_h=float(durations.mean()),
        median_trade_duration_h=float(np.median(durations)),
        longest_trade_h=float(durations.max()),
        shortest_trade_h=float(durations.min()),
        max_consecutive_wins=wins,
        max_consecutive_losses=losses,
        avg_bars_in_trade=float(np.mean([t.bars_held for t in closed])),
        trades_per_month=len(closed) / span_months if span_months > 0 else float(len(closed)),
        best_month=max(months, key=lambda m: m.returns) if months else _EMPTY_MONTH,
        worst_month=min(months, key=lambda m: m.returns) if months else _EMPTY_MONTH,
    )


def compute_performance(
    trades: Sequence[Trade],
    initial_capital: float,
    start_ms: int,
    end_ms: int,
    bars: int = 0,
    bars_in_market: int = 0,
    risk_free_rate: float = 0.02,
) -> PerformanceMetrics:
    closed = closed_trades(trades)
    if not closed:
        return PerformanceMetrics()

    pnls = [t.pnl for t in closed]
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p < 0]
    total_pnl = sum(pnls)
    total_return = total_pnl / initial_capital if initial_capital > 0 else 0.0

    avg_win = sum(winners) / len(winners) if winners else 0.0
    avg_loss = abs(sum(losers) / len(losers)) if losers else 0.0
    returns = [t.pnl_percent or 0.0 for t in closed]

    curve = equity_curve(closed, initial_capital, start_ms)
    drawdown, drawdown_ms = max_drawdown(curve)
    annualized = annualized_return(total_return, (end_ms - start_ms) / _DAY_MS)

    return PerformanceMetrics(
        total_return=total_return,
        annualized_return=annualized,
        total_trades=len(closed),
        winning_trades=len(winners),
        losing_trades=len(losers),
        break_even_trades=len(closed) - len(winners) - len(losers),
        win_rate=len(winners) / len(closed),
        avg_win=avg_win,
        avg_loss=avg_loss,
        largest_win=max(winners) if winners else 0.0,
        largest_loss=min(losers) if losers else 0.0,
        profit_factor=(avg_win * len(winners)) / (avg_loss * len(losers)) if losers and avg_loss > 0 else 0.0,
        expectancy=total_pnl / len(closed),
        sharpe_ratio=sharpe_ratio(returns, risk_free_rate),
        sortino_ratio=sortino_ratio(returns, risk_free_rate),
        calmar_ratio=calmar_ratio(annualized, drawdown),
        max_drawdown=drawdown,
        max_drawdown_duration_ms=drawdown_ms,
        recovery_factor=total_return / drawdown if drawdown > 0 else 0.0,
        payoff_ratio=avg_win / avg_loss if avg_loss > 0 else 0.0,
        exposure_time=bars_in_market / bars if bars > 0 else 0.0,
    )

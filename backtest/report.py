from __future__ import annotations

from backtest.runner import BacktestResult
from engine.models import Signal


def _pct(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value * 100:.2f}%"


def _ratio(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:.2f}"


def render_report(result: BacktestResult) -> str:
    perf = result.performance
    risk = result.risk_metrics
    analysis = result.trade_analysis
    lines = [
        f"Backtest {result.id}: {result.strategy_name} on {result.config.symbol} ({result.config.timeframe})",
        f"Bars: {result.bars}",
        f"Total return: {_pct(perf.total_return)}",
        f"Annualized return: {_pct(perf.annualized_return)}",
        f"Total trades: {perf.total_trades} (won {perf.winning_trades}, lost {perf.losing_trades}, even {perf.break_even_trades})",
        f"Win rate: {_pct(perf.win_rate)}",
        f"Profit factor: {_ratio(perf.profit_factor)}",
        f"Expectancy: {perf.expectancy:.2f}",
        f"Sharpe: {_ratio(perf.sharpe_ratio)}  Sortino: {_ratio(perf.sortino_ratio)}  Calmar: {_ratio(perf.calmar_ratio)}",
        f"Max drawdown: {_pct(perf.max_drawdown)} over {perf.max_drawdown_duration_ms / 3_600_000:.1f}h",
        f"Exposure: {_pct(perf.exposure_time)}",
        f"VaR95: {_pct(risk.var95)}  VaR99: {_pct(risk.var99)}  CVaR95: {_pct(risk.cvar95)}",
        f"Avg trade: {analysis.avg_trade_duration_h:.1f}h  Streaks: +{analysis.max_consecutive_wins}/-{analysis.max_consecutive_losses}",
    ]
    for month in result.monthly_returns:
        lines.append(f"  {month.year}-{month.month:02d}: {_pct(month.returns)} ({month.trades} trades)")
    return "\n".join(lines)


def format_signal(signal: Signal) -> str:
    levels = ""
    if signal.stop_loss is not None and signal.take_profit is not None:
        levels = f" SL {signal.stop_loss:.4f} TP {signal.take_profit:.4f}"
    reasons = ", ".join(signal.reasons) or "-"
    return f"{signal.side} {signal.symbol} @ {signal.price:.4f} ({signal.confidence * 100:.0f}% {signal.strategy_id}){levels} | {reasons}"

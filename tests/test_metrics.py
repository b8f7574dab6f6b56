import math
from datetime import datetime, timezone

import pytest

from backtest.metrics import (
    EquityPoint,
    PerformanceMetrics,
    analyze_trades,
    annualized_return,
    calmar_ratio,
    compute_performance,
    conditional_value_at_risk,
    drawdown_curve,
    equity_curve,
    max_drawdown,
    monthly_returns,
    risk_metrics,
    sharpe_ratio,
    sortino_ratio,
    value_at_risk,
)
from engine.models import Trade

DAY = 86_400_000


def _ms(year, month, day):
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp() * 1000)


def _trade(n, pnl, exit_time, entry_time=None, notional=1000.0, bars=5):
    entry_time = exit_time - 3_600_000 if entry_time is None else entry_time
    return Trade(
        id=f"trade-{n}",
        symbol="BTCUSDT",
        side="LONG",
        entry_time=entry_time,
        entry_price=100.0,
        quantity=notional / 100.0,
        commission=0.0,
        slippage=0.0,
        reason="test",
        exit_time=exit_time,
        exit_price=100.0 + pnl / (notional / 100.0),
        pnl=pnl,
        pnl_percent=pnl / notional,
        duration_ms=exit_time - entry_time,
        bars_held=bars,
    )


def test_empty_trades_give_neutral_metrics():
    assert compute_performance([], 10000.0, 0, 30 * DAY) == PerformanceMetrics()
    assert monthly_returns([]) == []
    assert risk_metrics(equity_curve([], 10000.0, 0)).var95 == 0.0
    analysis = analyze_trades([], [], 0, 30 * DAY)
    assert analysis.trades_per_month == 0.0
    assert analysis.best_month.trades == 0


def test_single_trade_example():
    trade = _trade(1, 10.0, exit_time=10 * DAY, entry_time=0, notional=100.0)
    perf = compute_performance([trade], 1000.0, 0, 365 * DAY)
    assert perf.total_return == pytest.approx(0.01)
    assert perf.total_trades == 1
    assert perf.win_rate == 1.0
    assert perf.avg_win == pytest.approx(10.0)
    assert perf.profit_factor == 0.0
    assert perf.max_drawdown == 0.0
    assert perf.sortino_ratio is None


def test_trade_counts_include_break_even():
    trades = [_trade(1, 10.0, DAY), _trade(2, -5.0, 2 * DAY), _trade(3, 0.0, 3 * DAY), _trade(4, 20.0, 4 * DAY)]
    perf = compute_performance(trades, 1000.0, 0, 10 * DAY, bars=100, bars_in_market=25)
    assert perf.total_trades == 4
    assert (perf.winning_trades, perf.losing_trades, perf.break_even_trades) == (2, 1, 1)
    assert perf.total_trades == perf.winning_trades + perf.losing_trades + perf.break_even_trades
    assert perf.win_rate == pytest.approx(0.5)
    assert perf.profit_factor == pytest.approx(30.0 / 5.0)
    assert perf.payoff_ratio == pytest.approx(15.0 / 5.0)
    assert perf.largest_win == 20.0
    assert perf.largest_loss == -5.0
    assert perf.exposure_time == pytest.approx(0.25)
    assert perf.expectancy == pytest.approx(25.0 / 4)


def test_ratio_denominators():
    assert sharpe_ratio([]) == 0.0
    assert sharpe_ratio([0.01, 0.01, 0.01]) == 0.0
    assert sortino_ratio([]) == 0.0
    assert sortino_ratio([0.01, 0.02]) is None
    assert sortino_ratio([0.02, -0.01]) == pytest.approx(
        ((0.005 * 252) - 0.02) / math.sqrt(0.0001 / 2 * 252)
    )
    assert calmar_ratio(0.5, 0.0) == 0.0


def test_sharpe_uses_population_deviation():
    returns = [0.01, -0.01]
    expected = (0.0 * 252 - 0.02) / (0.01 * math.sqrt(252))
    assert sharpe_ratio(returns) == pytest.approx(expected)


def test_max_drawdown_and_duration():
    equity = [
        EquityPoint(0, 100.0, 0, 0),
        EquityPoint(1000, 120.0, 0, 0),
        EquityPoint(2000, 90.0, 0, 0),
        EquityPoint(3000, 130.0, 0, 0),
        EquityPoint(4000, 117.0, 0, 0),
    ]
    drawdown, duration = max_drawdown(equity)
    assert drawdown == pytest.approx(0.25)
    assert duration == 2000
    assert max_drawdown([]) == (0.0, 0)


def test_unrecovered_drawdown_counts_to_last_point():
    equity = [EquityPoint(0, 100.0, 0, 0), EquityPoint(1000, 80.0, 0, 0), EquityPoint(5000, 90.0, 0, 0)]
    assert max_drawdown(equity) == (pytest.approx(0.2), 5000)


def test_equity_and_drawdown_curves():
    trades = [_trade(1, 100.0, DAY), _trade(2, -300.0, 2 * DAY), _trade(3, 50.0, 3 * DAY)]
    curve = equity_curve(trades, 1000.0, 0)
    assert [p.equity for p in curve] == [1000.0, 1100.0, 800.0, 850.0]
    assert all(0.0 <= p.drawdown <= 1.0 for p in curve)
    assert max(p.drawdown for p in curve) == pytest.approx(300.0 / 1100.0)
    assert max_drawdown(curve)[0] == pytest.approx(300.0 / 1100.0)
    dd = drawdown_curve(curve)
    assert dd[2].is_active and dd[2].duration_ms == DAY
    assert not dd[1].is_active


def test_value_at_risk_historical():
    returns = [-0.05, -0.03, 0.01, 0.02] + [0.01] * 16
    assert value_at_risk(returns, 0.95) == pytest.approx(0.03)
    assert conditional_value_at_risk(returns, 0.95) == pytest.approx(0.04)
    assert value_at_risk([], 0.95) == 0.0


def test_annualized_return_edges():
    assert annualized_return(0.1, 0) == 0.0
    assert annualized_return(-1.5, 30) == -1.0
    assert annualized_return(0.1, 365) == pytest.approx(0.1)
    assert math.isfinite(annualized_return(5.0, 0.001))


def test_monthly_returns_bucket_by_exit_month():
    trades = [
        _trade(1, 10.0, _ms(2024, 1, 5)),
        _trade(2, -20.0, _ms(2024, 1, 20)),
        _trade(3, 30.0, _ms(2024, 2, 2)),
    ]
    months = monthly_returns(trades)
    assert [(m.year, m.month, m.trades) for m in months] == [(2024, 1, 2), (2024, 2, 1)]
    assert months[0].returns == pytest.approx(-0.01)
    assert months[1].returns == pytest.approx(0.03)


def test_trade_analysis_streaks_and_durations():
    trades = [
        _trade(1, 10.0, DAY),
        _trade(2, 5.0, 2 * DAY),
        _trade(3, -1.0, 3 * DAY),
        _trade(4, -2.0, 4 * DAY),
        _trade(5, -3.0, 5 * DAY),
        _trade(6, 4.0, 6 * DAY),
    ]
    months = monthly_returns(trades)
    analysis = analyze_trades(trades, months, 0, 30 * DAY)
    assert analysis.max_consecutive_wins == 2
    assert analysis.max_consecutive_losses == 3
    assert analysis.avg_trade_duration_h == pytest.approx(1.0)
    assert analysis.avg_bars_in_trade == pytest.approx(5.0)
    assert analysis.best_month == months[0]


def test_max_drawdown_never_decreases_as_points_are_added():
    values = [100.0, 110.0, 95.0, 105.0, 120.0, 80.0, 90.0, 130.0, 60.0, 140.0]
    equity = [EquityPoint(i * 1000, v, 0, 0) for i, v in enumerate(values)]
    drawdowns = [max_drawdown(equity[: n + 1])[0] for n in range(len(equity))]
    assert all(b >= a for a, b in zip(drawdowns, drawdowns[1:]))
    assert all(0.0 <= d <= 1.0 for d in drawdowns)
    assert drawdowns[-1] == pytest.approx(70.0 / 130.0)

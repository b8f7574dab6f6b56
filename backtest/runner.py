from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Sequence

from loguru import logger

from adapters.base import HistoricalDataAdapter
from backtest.metrics import (
    DrawdownPoint,
    EquityPoint,
    MonthlyReturn,
    PerformanceMetrics,
    RiskMetrics,
    TradeAnalysis,
    analyze_trades,
    compute_performance,
    drawdown_curve,
    equity_curve,
    monthly_returns,
    risk_metrics,
)
from data.store import BaseStore
from engine.errors import BacktestCancelled, DataUnavailable, PersistenceFailure, TradingPlatformError
from engine.models import Candle, Trade, TradeSide
from indicators.snapshot import IndicatorSnapshot, compute_snapshot
from risk.exits import ExitLevels, ExitRule, build_exit_rule
from risk.manager import RiskManager
from services.config_service import BacktestConfig, build_backtest_config
from strategies.base import Strategy, StrategyRegistry
from strategies.evaluator import StrategyEvaluator


@dataclass
class SimulationOutcome:
    trades: list[Trade]
    bars: int
    bars_in_market: int


@dataclass
class _OpenTrade:
    trade: Trade
    levels: ExitLevels


def validate_series(candles: Sequence[Candle]) -> None:
    if not candles:
        raise DataUnavailable("No candles to simulate")
    for prev, cur in zip(candles, candles[1:]):
        if cur.ts <= prev.ts:
            raise DataUnavailable("Candle timestamps must be strictly increasing", context={"ts": cur.ts, "previous_ts": prev.ts})


def _track_excursion(trade: Trade, candle: Candle) -> None:
    entry = trade.entry_price
    if entry <= 0:
        return
    if trade.side == "LONG":
        favorable = (candle.high - entry) / entry
        adverse = (entry - candle.low) / entry
    else:
        favorable = (entry - candle.low) / entry
        adverse = (candle.high - entry) / entry
    trade.max_favorable_excursion = max(trade.max_favorable_excursion, favorable)
    trade.max_adverse_excursion = max(trade.max_adverse_excursion, adverse)


def _close_trade(trade: Trade, candle: Candle, config: BacktestConfig, reason: str) -> float:
    if trade.side == "LONG":
        exit_price = candle.close * (1 - config.slippage)
        gross = (exit_price - trade.entry_price) * trade.quantity
    else:
        exit_price = candle.close * (1 + config.slippage)
        gross = (trade.entry_price - exit_price) * trade.quantity
    exit_commission = trade.quantity * exit_price * config.commission
    pnl = gross - trade.commission - exit_commission
    notional = trade.entry_price * trade.quantity

    trade.exit_time = candle.ts
    trade.exit_price = exit_price
    trade.exit_reason = reason
    trade.commission += exit_commission
    trade.slippage += trade.quantity * candle.close * config.slippage
    trade.pnl = pnl
    trade.pnl_percent = pnl / notional if notional > 0 else 0.0
    trade.duration_ms = candle.ts - trade.entry_time
    return pnl


def _exit_reason(
    position: _OpenTrade,
    candle: Candle,
    rule: ExitRule,
    exit_signal: bool,
    entry_side: str,
) -> str | None:
    trade = position.trade
    hit = rule.check(trade.side, candle.close, position.levels)
    if hit:
        return hit
    # exit conditions describe leaving a long
    if exit_signal and trade.side == "LONG":
        return "exit_signal"
    if entry_side not in ("FLAT", trade.side):
        return "opposite_signal"
    return None


def simulate(
    candles: Sequence[Candle],
    strategy: Strategy,
    config: BacktestConfig,
    evaluator: StrategyEvaluator | None = None,
    exit_rule: ExitRule | None = None,
    cancel_event: threading.Event | None = None,
) -> SimulationOutcome:
    """Replay a strategy bar by bar: exits first, then entries, on each close."""
    validate_series(candles)
    evaluator = evaluator or StrategyEvaluator(config.threshold)
    rule = exit_rule or build_exit_rule(config.exit_rule or strategy.risk.resolved_exit_rule())
    risk = RiskManager(
        max_positions=config.max_positions,
        risk_per_trade=config.risk_per_trade,
        cooldown_ms=int(strategy.risk.cooldown_minutes * 60_000),
    )

    capital = config.initial_capital
    trades: list[Trade] = []
    open_trades: list[_OpenTrade] = []
    last_entry_ts: int | None = None
    previous: IndicatorSnapshot | None = None
    bars_in_market = 0
    first_bar = max(0, config.warmup_bars - 1)
    last_index = len(candles) - 1

    for i, candle in enumerate(candles):
        if cancel_event is not None and cancel_event.is_set():
            raise BacktestCancelled("Backtest cancelled", context={"strategy_id": strategy.id, "bar": i})
        if i < first_bar:
            continue

        window = candles[max(0, i - config.lookback_bars + 1) : i + 1]
        snapshot = compute_snapshot(window)
        can_enter = i >= config.warmup_bars and i < last_index

        if open_trades:
            bars_in_market += 1
        entry_side = "FLAT"
        evaluation = None
        if can_enter or open_trades:
            evaluation = evaluator.evaluate(strategy, snapshot, previous)
            entry_side = evaluation.side
        exit_signal = False
        if open_trades:
            exit_signal, _ = evaluator.evaluate_exit(strategy, snapshot, previous)

        still_open: list[_OpenTrade] = []
        for position in open_trades:
            position.trade.bars_held += 1
            _track_excursion(position.trade, candle)
            reason = _exit_reason(position, candle, rule, exit_signal, entry_side)
            if reason is None:
                still_open.append(position)
                continue
            capital += _close_trade(position.trade, candle, config, reason)
            trades.append(position.trade)
        open_trades = still_open

        if can_enter and evaluation is not None and evaluation.fired:
            side: TradeSide = "LONG" if evaluation.side == "LONG" else "SHORT"
            if side == "LONG" or config.allow_short:
                entry_price = candle.close * (1 + config.slippage) if side == "LONG" else candle.close * (1 - config.slippage)
                decision = risk.evaluate(entry_price, capital, len(open_trades), candle.ts, last_entry_ts)
                if decision.allowed and decision.qty:
                    qty = decision.qty
                    trade = Trade(
                        id=f"trade-{len(trades) + len(open_trades) + 1}",
                        symbol=config.symbol,
                        side=side,
                        entry_time=candle.ts,
                        entry_price=entry_price,
                        quantity=qty,
                        commission=qty * entry_price * config.commission,
                        slippage=qty * candle.close * config.slippage,
                        reason="; ".join(evaluation.reasons),
                    )
                    levels = rule.levels(side, entry_price, snapshot.atr)
                    trade.stop_loss, trade.take_profit = levels.stop_loss, levels.take_profit
                    open_trades.append(_OpenTrade(trade, levels))
                    last_entry_ts = candle.ts

        previous = snapshot

    if open_trades and config.close_at_end:
        last = candles[-1]
        for position in open_trades:
            capital += _close_trade(position.trade, last, config, "end_of_data")
            trades.append(position.trade)

    trades.sort(key=lambda t: (t.exit_time, t.entry_time))
    return SimulationOutcome(trades=trades, bars=len(candles), bars_in_market=bars_in_market)


@dataclass
class BacktestResult:
    id: str
    config: BacktestConfig
    strategy_name: str
    trades: list[Trade]
    performance: PerformanceMetrics
    equity: list[EquityPoint]
    drawdown: list[DrawdownPoint]
    monthly_returns: list[MonthlyReturn]
    risk_metrics: RiskMetrics
    trade_analysis: TradeAnalysis
    bars: int
    started_at: int
    finished_at: int

    @property
    def duration_ms(self) -> int:
        return self.finished_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "config": self.config.model_dump(mode="json"),
            "strategy_name": self.strategy_name,
            "trades": [asdict(t) for t in self.trades],
            "performance": asdict(self.performance),
            "equity": [asdict(p) for p in self.equity],
            "drawdown": [asdict(p) for p in self.drawdown],
            "monthly_returns": [asdict(m) for m in self.monthly_returns],
            "risk_metrics": asdict(self.risk_metrics),
            "trade_analysis": asdict(self.trade_analysis),
            "bars": self.bars,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class BacktestEngine:
    def __init__(
        self,
        adapter: HistoricalDataAdapter,
        registry: StrategyRegistry,
        store: BaseStore | None = None,
        evaluator: StrategyEvaluator | None = None,
        risk_free_rate: float = 0.02,
    ) -> None:
        self.adapter = adapter
        self.registry = registry
        self.store = store
        self.evaluator = evaluator
        self.risk_free_rate = risk_free_rate
        self._results: dict[str, BacktestResult] = {}

    async def run_backtest(
        self,
        config: BacktestConfig | dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> BacktestResult:
        if not isinstance(config, BacktestConfig):
            config = build_backtest_config(**config)
        started_at = int(time.time() * 1000)
        logger.info("Starting backtest for {} with strategy {}", config.symbol, config.strategy_id)
        try:
            strategy = self.registry.get(config.strategy_id)
            candles = await self.adapter.fetch_candles(config.symbol, config.timeframe, config.start_ms, config.end_ms)
            evaluator = self.evaluator or StrategyEvaluator(config.threshold)
            outcome = await asyncio.to_thread(simulate, candles, strategy, config, evaluator, None, cancel_event)
        except TradingPlatformError as exc:
            exc.context.setdefault("symbol", config.symbol)
            exc.context.setdefault("strategy_id", config.strategy_id)
            raise

        result = self._build_result(config, strategy, outcome, started_at)
        logger.info(
            "Backtest finished for {} with {} trades, return {:.2%}",
            config.symbol,
            result.performance.total_trades,
            result.performance.total_return,
        )
        await self._store(result)
        self._results[result.id] = result
        return result

    def _build_result(self, config: BacktestConfig, strategy: Strategy, outcome: SimulationOutcome, started_at: int) -> BacktestResult:
        trades = outcome.trades
        equity = equity_curve(trades, config.initial_capital, config.start_ms)
        months = monthly_returns(trades)
        return BacktestResult(
            id=f"backtest-{uuid.uuid4().hex[:12]}",
            config=config,
            strategy_name=strategy.name,
            trades=trades,
            performance=compute_performance(
                trades,
                config.initial_capital,
                config.start_ms,
                config.end_ms,
                bars=outcome.bars,
                bars_in_market=outcome.bars_in_market,
                risk_free_rate=self.risk_free_rate,
            ),
            equity=equity,
            drawdown=drawdown_curve(equity),
            monthly_returns=months,
            risk_metrics=risk_metrics(equity),
            trade_analysis=analyze_trades(trades, months, config.start_ms, config.end_ms),
            bars=outcome.bars,
            started_at=started_at,
            finished_at=int(time.time() * 1000),
        )

    async def _store(self, result: BacktestResult) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.store_backtest_result, result)
        except PersistenceFailure as exc:
            logger.warning("Could not store backtest result {}: {}", result.id, exc)

    def get_result(self, result_id: str) -> BacktestResult | None:
        return self._results.get(result_id)

    def list_results(self) -> list[BacktestResult]:
        return list(self._results.values())

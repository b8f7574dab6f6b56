from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Sequence

from loguru import logger

from engine.idempotency import Idempotency
from engine.market import MarketState
from engine.models import Candle, PortfolioStats, PriceValidation, Signal, Tick
from engine.portfolio import PaperPortfolio
from indicators.snapshot import IndicatorSnapshot, compute_snapshot
from services.alerts import AlertEngine
from services.recorder import SignalRecorder
from strategies.base import Strategy, StrategyRegistry
from strategies.evaluator import StrategyEvaluator

MIN_WINDOW = 21


class SignalEngine:
    """Evaluates every registered strategy on each accepted tick."""

    def __init__(
        self,
        registry: StrategyRegistry,
        evaluator: StrategyEvaluator | None = None,
        market: MarketState | None = None,
        portfolio: PaperPortfolio | None = None,
        recorder: SignalRecorder | None = None,
        alerts: AlertEngine | None = None,
        auto_trade: bool = False,
        history_cap: int = 1000,
        history_trim: int = 500,
    ) -> None:
        self.registry = registry
        self.evaluator = evaluator or StrategyEvaluator()
        self.market = market or MarketState()
        self.portfolio = portfolio or PaperPortfolio()
        self.recorder = recorder
        self.alerts = alerts
        self.auto_trade = auto_trade
        self.history_cap = history_cap
        self.history_trim = history_trim
        self.idempotency = Idempotency(max_keys=history_cap)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._snapshots: dict[str, IndicatorSnapshot] = {}
        self._last_signal_ts: dict[tuple[str, str], int] = {}
        self._active: dict[tuple[str, str], Signal] = {}
        self._history: list[Signal] = []

    async def on_tick(self, tick: Tick) -> list[Signal]:
        async with self._locks[tick.symbol]:
            enhanced = self.market.ingest(tick)
            if enhanced is None:
                return []
            self.portfolio.mark_to_market(tick.symbol, enhanced.close, enhanced.ts)

            window = self.market.window(tick.symbol)
            if len(window) < MIN_WINDOW:
                return []
            snapshot = compute_snapshot([t.as_candle() for t in window])
            previous = self._snapshots.get(tick.symbol)
            self._snapshots[tick.symbol] = snapshot
            if self.alerts is not None:
                self.alerts.evaluate(tick.symbol, snapshot, previous, enhanced.ts)

            accepted = []
            for strategy in self.registry.all():
                evaluation = self.evaluator.evaluate(strategy, snapshot, previous)
                if not evaluation.fired:
                    continue
                signal = self.evaluator.build_signal(strategy, tick.symbol, snapshot, evaluation, enhanced.ts)
                if self._accept(strategy, signal):
                    accepted.append(signal)
            return accepted

    def _accept(self, strategy: Strategy, signal: Signal) -> bool:
        key = f"{strategy.id}:{signal.symbol}:{signal.ts}:{signal.side}"
        if not self.idempotency.check_and_add(key):
            logger.debug("Duplicate signal {}", key)
            return False
        pair = (strategy.id, signal.symbol)
        cooldown_ms = int(strategy.risk.cooldown_minutes * 60_000)
        last_ts = self._last_signal_ts.get(pair)
        if last_ts is not None and signal.ts - last_ts < cooldown_ms:
            logger.debug("Signal {} suppressed by cooldown", signal.id)
            return False

        self._last_signal_ts[pair] = signal.ts
        self._active[pair] = signal
        self._history.insert(0, signal)
        if len(self._history) > self.history_cap:
            self._history = self._history[: self.history_trim]
        logger.info("Signal {} {} {:.0%} from {}", signal.side, signal.symbol, signal.confidence, strategy.id)

        if self.recorder is not None:
            self.recorder.record(signal)
        if self.auto_trade:
            self.portfolio.open_position(signal)
        return True

    def best_signal(self, symbol: str, candles: Sequence[Candle]) -> Signal | None:
        if len(candles) < MIN_WINDOW:
            return None
        snapshot = compute_snapshot(candles)
        previous = compute_snapshot(candles[:-1])
        best = None
        for strategy in self.registry.all():
            evaluation = self.evaluator.evaluate(strategy, snapshot, previous)
            if not evaluation.fired:
                continue
            if best is None or evaluation.confidence > best[1].confidence:
                best = (strategy, evaluation)
        if best is None:
            return None
        strategy, evaluation = best
        return self.evaluator.build_signal(strategy, symbol, snapshot, evaluation, candles[-1].ts)

    def generate_signal(self, symbol: str) -> Signal | None:
        window = self.market.window(symbol)
        if not window:
            return None
        return self.best_signal(symbol, [t.as_candle() for t in window])

    def add_strategy(self, strategy: Strategy) -> None:
        self.registry.add(strategy)

    def remove_strategy(self, strategy_id: str) -> None:
        self.registry.remove(strategy_id)
        for pair in [p for p in self._active if p[0] == strategy_id]:
            del self._active[pair]

    def get_strategy(self, strategy_id: str) -> Strategy | None:
        return self.registry.find(strategy_id)

    def get_strategies(self) -> list[Strategy]:
        return self.registry.all()

    def get_active_signals(self) -> list[Signal]:
        return list(self._active.values())

    def get_signal_history(self, limit: int = 50) -> list[Signal]:
        return self._history[:limit]

    def get_price_validations(self) -> list[PriceValidation]:
        return self.market.price_validations(50)

    def get_discrepancy_stats(self) -> dict[str, float]:
        return self.market.discrepancy_stats()

    def get_portfolio_stats(self) -> PortfolioStats:
        return self.portfolio.stats()

    def update_order_book(self, symbol: str, bids: Sequence[tuple[float, float]], asks: Sequence[tuple[float, float]]) -> None:
        self.market.update_order_book(symbol, bids, asks)

    def dispose(self) -> None:
        self.market.clear()
        self.portfolio.clear()
        if self.alerts is not None:
            self.alerts.clear()
        self.idempotency.clear()
        self._snapshots.clear()
        self._last_signal_ts.clear()
        self._active.clear()
        self._history.clear()
        self._locks.clear()

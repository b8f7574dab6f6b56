from __future__ import annotations

import asyncio
import threading
from typing import Any

from loguru import logger

from adapters.base import HistoricalDataAdapter
from adapters.binance_spot import BinanceHistoricalAdapter
from adapters.csv_file import CsvDataAdapter
from adapters.simulation import SimulatedDataAdapter
from backtest.runner import BacktestEngine, BacktestResult
from data.store import BaseStore, create_store
from engine.core import SignalEngine
from engine.feed import PollingFeed
from engine.market import MarketState
from engine.models import PortfolioStats, Signal, Tick
from engine.portfolio import PaperPortfolio
from services.alerts import AlertEngine
from services.config_service import BacktestConfig, ConfigService, EngineSettings, RuntimeConfig, configure_logging
from services.recorder import SignalRecorder
from strategies.base import StrategyRegistry
from strategies.evaluator import StrategyEvaluator
from strategies.presets import default_registry


def build_adapter(settings: EngineSettings, data_source: str | None = None) -> HistoricalDataAdapter:
    source = data_source or settings.DATA_SOURCE
    if source == "binance":
        return BinanceHistoricalAdapter(settings.BINANCE_API_KEY, settings.BINANCE_API_SECRET)
    if source == "csv":
        return CsvDataAdapter(settings.CSV_PATH)
    if source == "simulation":
        return SimulatedDataAdapter(seed=settings.SIMULATION_SEED)
    raise ValueError(f"Unknown data source: {source}")


class TradingCore:
    """Public entry point wiring the backtest service, live engine and persistence together."""

    def __init__(
        self,
        config: RuntimeConfig,
        store: BaseStore,
        adapter: HistoricalDataAdapter,
        registry: StrategyRegistry,
        engine: SignalEngine,
        backtests: BacktestEngine,
        recorder: SignalRecorder,
    ) -> None:
        self.config = config
        self.store = store
        self.adapter = adapter
        self.registry = registry
        self.engine = engine
        self.backtests = backtests
        self.recorder = recorder
        self.alerts = engine.alerts
        self.feed = PollingFeed(adapter, engine, config.symbols, config.timeframe)
        self._feed_task: asyncio.Task | None = None

    @classmethod
    def build(
        cls,
        settings: EngineSettings | None = None,
        store: BaseStore | None = None,
        adapter: HistoricalDataAdapter | None = None,
        registry: StrategyRegistry | None = None,
    ) -> TradingCore:
        settings = settings or EngineSettings()
        configure_logging(settings.LOG_LEVEL)
        store = store or create_store(settings.DATABASE_URL or None, settings.DATABASE_PATH)
        config = ConfigService(store, settings).load()
        adapter = adapter or build_adapter(settings, config.data_source)
        registry = registry or default_registry()
        recorder = SignalRecorder(store)
        engine = SignalEngine(
            registry,
            evaluator=StrategyEvaluator(config.signal_threshold),
            market=MarketState(
                window=config.history_window,
                discrepancy_threshold=config.price_discrepancy_threshold,
                correction_threshold=config.price_correction_threshold,
                reference_prices=config.reference_prices,
            ),
            portfolio=PaperPortfolio(
                config.initial_portfolio_value, config.max_open_positions, history_cap=config.signal_history_cap
            ),
            recorder=recorder,
            alerts=AlertEngine(history_cap=config.signal_history_cap),
            auto_trade=config.auto_trade,
            history_cap=config.signal_history_cap,
            history_trim=config.signal_history_trim,
        )
        backtests = BacktestEngine(adapter, registry, store=store, risk_free_rate=config.risk_free_rate)
        logger.info("Trading core built with {} strategies on {} data", len(registry), adapter.name)
        return cls(config, store, adapter, registry, engine, backtests, recorder)

    async def run_backtest(
        self,
        config: BacktestConfig | dict[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> BacktestResult:
        if isinstance(config, dict):
            config = {
                "warmup_bars": self.config.warmup_bars,
                "lookback_bars": self.config.lookback_bars,
                "threshold": self.config.backtest_threshold,
                **config,
            }
        return await self.backtests.run_backtest(config, cancel_event=cancel_event)

    async def generate_signal(self, symbol: str) -> Signal | None:
        signal = self.engine.generate_signal(symbol)
        if signal is not None or self.engine.market.window(symbol):
            return signal
        candles = await self.adapter.fetch_latest(symbol, self.config.timeframe, limit=self.config.history_window)
        return self.engine.best_signal(symbol, candles)

    def get_portfolio_stats(self) -> PortfolioStats:
        return self.engine.get_portfolio_stats()

    async def on_tick(self, tick: Tick) -> list[Signal]:
        return await self.engine.on_tick(tick)

    async def start(self, prime: bool = True) -> None:
        if self._feed_task and not self._feed_task.done():
            return
        await self.recorder.start()
        if prime:
            await self.feed.prime(self.config.history_window)
        self._feed_task = asyncio.create_task(self.feed.run_forever())
        logger.info("Live feed started for {}", ", ".join(self.config.symbols))

    async def dispose(self) -> None:
        self.feed.stop()
        if self._feed_task is not None:
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
            self._feed_task = None
        await self.recorder.stop()
        self.engine.dispose()
        logger.info("Trading core disposed")

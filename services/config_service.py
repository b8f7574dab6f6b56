from __future__ import annotations

import sys
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from data.store import BaseStore
from engine.errors import InvalidConfig
from services.scheduler import supported_timeframes
from strategies.base import ExitRuleConfig


class EngineSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATA_SOURCE: Literal["binance", "csv", "simulation"] = "binance"
    CSV_PATH: str = "./data/candles"
    SIMULATION_SEED: int = 42
    BINANCE_API_KEY: str = ""
    BINANCE_API_SECRET: str = ""
    SYMBOLS: str = "BTCUSDT,ETHUSDT"
    TIMEFRAME: str = "1m"
    SIGNAL_THRESHOLD: float = 0.6
    BACKTEST_THRESHOLD: float = 0.6
    WARMUP_BARS: int = 50
    LOOKBACK_BARS: int = 100
    HISTORY_WINDOW: int = 100
    SIGNAL_HISTORY_CAP: int = 1000
    SIGNAL_HISTORY_TRIM: int = 500
    PRICE_DISCREPANCY_THRESHOLD: float = 0.05
    PRICE_CORRECTION_THRESHOLD: float = 0.10
    INITIAL_PORTFOLIO_VALUE: float = 100000.0
    MAX_OPEN_POSITIONS: int = 10
    AUTO_TRADE: bool = False
    RISK_FREE_RATE: float = 0.02
    DATABASE_PATH: str = "./signals.db"
    DATABASE_URL: str = ""
    LOG_LEVEL: str = "INFO"


class RuntimeConfig(BaseModel):
    data_source: str
    symbols: list[str]
    timeframe: str
    signal_threshold: float
    backtest_threshold: float
    warmup_bars: int
    lookback_bars: int
    history_window: int
    signal_history_cap: int
    signal_history_trim: int
    price_discrepancy_threshold: float
    price_correction_threshold: float
    initial_portfolio_value: float
    max_open_positions: int
    auto_trade: bool
    risk_free_rate: float
    reference_prices: dict[str, float] = Field(default_factory=dict)


class ConfigService:
    def __init__(self, store: BaseStore, base: EngineSettings) -> None:
        self.store = store
        self.base = base

    def load(self) -> RuntimeConfig:
        overrides = self.store.all_settings()

        def _get(key: str, default: Any) -> Any:
            return overrides.get(key, default)

        symbols = _get("SYMBOLS", self.base.SYMBOLS)
        if isinstance(symbols, str):
            symbols = [s.strip() for s in symbols.split(",") if s.strip()]
        try:
            return RuntimeConfig(
                data_source=_get("DATA_SOURCE", self.base.DATA_SOURCE),
                symbols=symbols,
                timeframe=_get("TIMEFRAME", self.base.TIMEFRAME),
                signal_threshold=_get("SIGNAL_THRESHOLD", self.base.SIGNAL_THRESHOLD),
                backtest_threshold=_get("BACKTEST_THRESHOLD", self.base.BACKTEST_THRESHOLD),
                warmup_bars=_get("WARMUP_BARS", self.base.WARMUP_BARS),
                lookback_bars=_get("LOOKBACK_BARS", self.base.LOOKBACK_BARS),
                history_window=_get("HISTORY_WINDOW", self.base.HISTORY_WINDOW),
                signal_history_cap=_get("SIGNAL_HISTORY_CAP", self.base.SIGNAL_HISTORY_CAP),
                signal_history_trim=_get("SIGNAL_HISTORY_TRIM", self.base.SIGNAL_HISTORY_TRIM),
                price_discrepancy_threshold=_get("PRICE_DISCREPANCY_THRESHOLD", self.base.PRICE_DISCREPANCY_THRESHOLD),
                price_correction_threshold=_get("PRICE_CORRECTION_THRESHOLD", self.base.PRICE_CORRECTION_THRESHOLD),
                initial_portfolio_value=_get("INITIAL_PORTFOLIO_VALUE", self.base.INITIAL_PORTFOLIO_VALUE),
                max_open_positions=_get("MAX_OPEN_POSITIONS", self.base.MAX_OPEN_POSITIONS),
                auto_trade=_get("AUTO_TRADE", self.base.AUTO_TRADE),
                risk_free_rate=_get("RISK_FREE_RATE", self.base.RISK_FREE_RATE),
                reference_prices=_get("REFERENCE_PRICES", {}),
            )
        except ValidationError as exc:
            raise InvalidConfig("Invalid runtime configuration", context={"error": str(exc)}) from exc

    def update(self, key: str, value: Any) -> None:
        self.store.set_setting(key.upper(), value)


class BacktestConfig(BaseModel):
    strategy_id: str
    symbol: str
    timeframe: str = "1h"
    start_ms: int
    end_ms: int
    initial_capital: float = 100000.0
    commission: float = 0.001
    slippage: float = 0.0005
    max_positions: int = 1
    risk_per_trade: float = 0.02
    warmup_bars: int = 50
    lookback_bars: int = 100
    threshold: float = 0.6
    close_at_end: bool = True
    allow_short: bool = False
    exit_rule: ExitRuleConfig | None = None

    @field_validator("initial_capital")
    @classmethod
    def _positive_capital(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("initial_capital must be positive")
        return v

    @field_validator("risk_per_trade")
    @classmethod
    def _risk_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("risk_per_trade must be in (0, 1]")
        return v

    @field_validator("commission", "slippage")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("commission and slippage must not be negative")
        return v

    @field_validator("max_positions")
    @classmethod
    def _at_least_one_slot(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_positions must be at least 1")
        return v

    @field_validator("warmup_bars")
    @classmethod
    def _warmup(cls, v: int) -> int:
        if v < 0:
            raise ValueError("warmup_bars must not be negative")
        return v

    @field_validator("lookback_bars")
    @classmethod
    def _lookback(cls, v: int) -> int:
        if v < 2:
            raise ValueError("lookback_bars must be at least 2")
        return v

    @field_validator("threshold")
    @classmethod
    def _threshold(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("threshold must be in [0, 1]")
        return v

    @field_validator("timeframe")
    @classmethod
    def _timeframe(cls, v: str) -> str:
        if v not in supported_timeframes():
            raise ValueError(f"Unsupported timeframe: {v}")
        return v

    @model_validator(mode="after")
    def _date_range(self) -> BacktestConfig:
        if self.end_ms <= self.start_ms:
            raise ValueError("end_ms must be after start_ms")
        return self


def build_backtest_config(**kwargs: Any) -> BacktestConfig:
    try:
        return BacktestConfig(**kwargs)
    except ValidationError as exc:
        raise InvalidConfig("Invalid backtest configuration", context={"error": _first_error(exc)}) from exc


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    loc = ".".join(str(p) for p in errors[0].get("loc", ()))
    return f"{loc}: {errors[0].get('msg')}" if loc else str(errors[0].get("msg"))


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

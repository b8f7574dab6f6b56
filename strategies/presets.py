from __future__ import annotations

from strategies.base import ExitRuleConfig, RiskParameters, Strategy, StrategyCondition, StrategyRegistry


def _c(indicator: str, operator: str, value: float | str = 0.0, weight: float = 1.0, timeframe: str | None = None) -> StrategyCondition:
    return StrategyCondition(indicator=indicator, operator=operator, value=value, weight=weight, timeframe=timeframe)


MOMENTUM_SCALPER = Strategy(
    id="momentum-scalper",
    name="Momentum Scalper",
    description="Trend-following momentum entries confirmed by VWAP and volume",
    author="TradingPro",
    type="momentum",
    timeframes=("1m", "5m"),
    conditions=(
        _c("ema9", ">", "ema21", 0.3, "1m"),
        _c("macd", ">", 0, 0.2, "1m"),
        _c("rsi", ">", 50, 0.2, "1m"),
        _c("price", ">", "vwap", 0.2, "5m"),
        _c("volume", ">", 1.5, 0.1, "1m"),
    ),
    exit_conditions=(
        _c("ema9", "<", "ema21"),
        _c("rsi", "<", 30),
    ),
    risk=RiskParameters(max_risk=0.02, stop_loss_atr=1.2, take_profit_rr=1.5, cooldown_minutes=10),
)

MEAN_REVERSION = Strategy(
    id="mean-reversion",
    name="Mean Reversion",
    description="Counter-trend entries on oversold readings below the lower band",
    author="QuantMaster",
    type="mean-reversion",
    timeframes=("5m", "15m"),
    conditions=(
        _c("rsi", "<", 30, 0.4, "5m"),
        _c("price", "<", "bollinger.lower", 0.3, "5m"),
        _c("volume", ">", 1.2, 0.3, "5m"),
    ),
    exit_conditions=(_c("rsi", ">", 50),),
    risk=RiskParameters(max_risk=0.015, stop_loss_atr=1.0, take_profit_rr=2.0, cooldown_minutes=15),
)

BREAKOUT_MOMENTUM = Strategy(
    id="breakout-momentum",
    name="Breakout Momentum",
    description="Breakouts above the upper band with volume confirmation",
    author="BreakoutMaster",
    type="breakout",
    timeframes=("15m", "1h"),
    conditions=(
        _c("price", ">", "bollinger.upper", 0.4, "15m"),
        _c("volume", ">", 2.0, 0.3, "15m"),
        _c("rsi", ">", 60, 0.2, "15m"),
        _c("atr", ">", 1.5, 0.1, "15m"),
    ),
    exit_conditions=(_c("price", "<", "bollinger.middle"),),
    risk=RiskParameters(max_risk=0.025, stop_loss_atr=1.5, take_profit_rr=2.5, cooldown_minutes=30),
)

BREAKOUT_HUNTER = Strategy(
    id="breakout-hunter",
    name="Breakout Hunter",
    description="EMA divergence with RSI momentum and a bullish MACD",
    author="BreakoutMaster",
    type="breakout",
    timeframes=("1h",),
    conditions=(
        _c("ema9", ">", "ema21", 0.3),
        _c("rsi", ">", 60, 0.3),
        _c("macd", ">", "macd_signal", 0.4),
    ),
    exit_conditions=(_c("ema9", "<", "ema21"),),
    risk=RiskParameters(
        max_risk=0.02,
        cooldown_minutes=60,
        exit_rule=ExitRuleConfig(kind="fixed_percentage", stop_loss_pct=0.05, take_profit_pct=0.10),
    ),
)

LIQUIDITY_SWEEP = Strategy(
    id="liquidity-sweep",
    name="Liquidity Sweep",
    description="Reclaims of swept support on heavy volume",
    author="LiquidityHunter",
    type="liquidity-sweep",
    timeframes=("5m", "15m"),
    conditions=(
        _c("price", "crossover", "support", 0.5, "5m"),
        _c("volume", ">", 3.0, 0.3, "5m"),
        _c("williams_r", "<", -80, 0.2, "5m"),
    ),
    exit_conditions=(_c("rsi", ">", 70),),
    risk=RiskParameters(max_risk=0.02, stop_loss_atr=1.0, take_profit_rr=3.0, cooldown_minutes=20),
)

NEWS_MOMENTUM = Strategy(
    id="news-momentum",
    name="News Momentum",
    description="Momentum after volume and volatility spikes",
    author="NewsTrader",
    type="news-driven",
    timeframes=("1m", "5m"),
    conditions=(
        _c("volume", ">", 5.0, 0.4, "1m"),
        _c("volatility", ">", 2.0, 0.3, "1m"),
        _c("price", ">", "vwap", 0.3, "5m"),
    ),
    exit_conditions=(_c("price", "<", "vwap"),),
    risk=RiskParameters(max_risk=0.03, stop_loss_atr=2.0, take_profit_rr=1.8, cooldown_minutes=5),
)

ADVANCED_SCALPING = Strategy(
    id="advanced-scalping",
    name="Advanced Scalping",
    description="Supertrend scalps with stochastic and CCI confirmation",
    author="ScalpMaster",
    type="momentum",
    timeframes=("1m", "3m"),
    conditions=(
        _c("supertrend.direction", "=", "UP", 0.3, "1m"),
        _c("stochastic", "<", 80, 0.2, "1m"),
        _c("cci", ">", -100, 0.2, "1m"),
        _c("volume", ">", 1.8, 0.3, "1m"),
    ),
    exit_conditions=(_c("supertrend.direction", "=", "DOWN"),),
    risk=RiskParameters(max_risk=0.01, stop_loss_atr=0.8, take_profit_rr=1.2, cooldown_minutes=3),
)

PRESET_STRATEGIES: tuple[Strategy, ...] = (
    MOMENTUM_SCALPER,
    MEAN_REVERSION,
    BREAKOUT_MOMENTUM,
    BREAKOUT_HUNTER,
    LIQUIDITY_SWEEP,
    NEWS_MOMENTUM,
    ADVANCED_SCALPING,
)


def default_registry() -> StrategyRegistry:
    return StrategyRegistry(PRESET_STRATEGIES)

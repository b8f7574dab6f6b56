from __future__ import annotations

from typing import Iterable, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from engine.errors import InvalidConfig, UnknownStrategy

Operator = Literal[">", "<", "=", "rising", "falling", "crossover", "crossunder"]
StrategyType = Literal["momentum", "mean-reversion", "breakout", "news-driven", "liquidity-sweep"]

_OPERATOR_ALIASES = {
    "gt": ">",
    "greater-than": ">",
    "lt": "<",
    "less-than": "<",
    "eq": "=",
    "==": "=",
    "equals": "=",
    "crosses-over": "crossover",
    "crosses_above": "crossover",
    "crosses-under": "crossunder",
    "crosses_under": "crossunder",
    "crosses_below": "crossunder",
}

_ALL_OPERATORS = frozenset({">", "<", "=", "rising", "falling", "crossover", "crossunder"})
_TREND_OPERATORS = frozenset({">", "<", "rising", "falling"})

NUMERIC_FIELDS = frozenset(
    {
        "price",
        "close",
        "ema9",
        "ema21",
        "sma20",
        "rsi",
        "macd",
        "macd.macd",
        "macd_signal",
        "macd.signal",
        "macd_histogram",
        "macd.histogram",
        "vwap",
        "bollinger.upper",
        "bollinger.middle",
        "bollinger.lower",
        "stochastic",
        "stochastic.k",
        "stochastic_d",
        "stochastic.d",
        "williams_r",
        "williamsR",
        "cci",
        "supertrend",
        "supertrend.value",
        "support",
        "resistance",
        "avg_volume",
    }
)

SUPPORTED_CONDITIONS: dict[str, frozenset[str]] = {name: _ALL_OPERATORS for name in NUMERIC_FIELDS}
SUPPORTED_CONDITIONS.update(
    {
        # literal comparands: multiple of average volume, percent, percent of price
        "volume": _TREND_OPERATORS,
        "volatility": _TREND_OPERATORS,
        "atr": _TREND_OPERATORS,
        "supertrend.direction": frozenset({"="}),
        "supertrend_direction": frozenset({"="}),
    }
)

DIRECTION_VALUES = frozenset({"UP", "DOWN"})


class StrategyCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    indicator: str
    operator: Operator
    value: float | str = 0.0
    timeframe: str | None = None
    weight: float = Field(default=1.0, gt=0, le=1)

    @field_validator("operator", mode="before")
    @classmethod
    def _normalise_operator(cls, value: str) -> str:
        if isinstance(value, str):
            return _OPERATOR_ALIASES.get(value.strip().lower(), value.strip())
        return value

    def describe(self) -> str:
        if self.operator in ("rising", "falling"):
            return f"{self.indicator} {self.operator}"
        if self.indicator == "volume" and not isinstance(self.value, str):
            return f"volume {self.operator} {self.value:g}x avg"
        value = self.value if isinstance(self.value, str) else f"{self.value:g}"
        return f"{self.indicator} {self.operator} {value}"


class ExitRuleConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["fixed_percentage", "atr_multiple", "risk_reward"] = "risk_reward"
    stop_loss_pct: float = Field(default=0.05, gt=0)
    take_profit_pct: float = Field(default=0.10, gt=0)
    stop_loss_atr: float = Field(default=1.5, gt=0)
    take_profit_atr: float = Field(default=3.0, gt=0)
    reward_ratio: float = Field(default=2.0, gt=0)


class RiskParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_risk: float = Field(default=0.02, gt=0, le=1)
    stop_loss_atr: float = Field(default=1.5, gt=0)
    take_profit_rr: float = Field(default=2.0, gt=0)
    cooldown_minutes: float = Field(default=0.0, ge=0)
    exit_rule: ExitRuleConfig | None = None

    def resolved_exit_rule(self) -> ExitRuleConfig:
        if self.exit_rule is not None:
            return self.exit_rule
        return ExitRuleConfig(kind="risk_reward", stop_loss_atr=self.stop_loss_atr, reward_ratio=self.take_profit_rr)


class Strategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: StrategyType
    description: str = ""
    author: str = ""
    timeframes: tuple[str, ...] = ()
    conditions: tuple[StrategyCondition, ...] = ()
    exit_conditions: tuple[StrategyCondition, ...] = ()
    risk: RiskParameters = RiskParameters()


def unsupported_conditions(strategy: Strategy) -> list[str]:
    problems = []
    for condition in (*strategy.conditions, *strategy.exit_conditions):
        operators = SUPPORTED_CONDITIONS.get(condition.indicator)
        if operators is None:
            problems.append(f"unknown indicator '{condition.indicator}'")
            continue
        if condition.operator not in operators:
            problems.append(f"operator '{condition.operator}' not supported for '{condition.indicator}'")
            continue
        if isinstance(condition.value, str):
            if condition.indicator in ("supertrend.direction", "supertrend_direction"):
                if condition.value not in DIRECTION_VALUES:
                    problems.append(f"supertrend direction must be UP or DOWN, got '{condition.value}'")
            elif condition.value not in NUMERIC_FIELDS:
                problems.append(f"unknown comparand '{condition.value}' for '{condition.indicator}'")
    return problems


def validate_strategy(strategy: Strategy) -> Strategy:
    problems = unsupported_conditions(strategy)
    if problems:
        raise InvalidConfig("Unsupported strategy conditions: " + "; ".join(problems), context={"strategy_id": strategy.id})
    return strategy


class StrategyRegistry:
    def __init__(self, strategies: Iterable[Strategy] = ()) -> None:
        self._strategies: dict[str, Strategy] = {}
        for strategy in strategies:
            self.add(strategy)

    def add(self, strategy: Strategy) -> None:
        validate_strategy(strategy)
        self._strategies[strategy.id] = strategy
        logger.debug("Registered strategy {}", strategy.id)

    def remove(self, strategy_id: str) -> None:
        self._strategies.pop(strategy_id, None)

    def get(self, strategy_id: str) -> Strategy:
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise UnknownStrategy(f"Strategy not registered: {strategy_id}", context={"strategy_id": strategy_id})
        return strategy

    def find(self, strategy_id: str) -> Strategy | None:
        return self._strategies.get(strategy_id)

    def all(self) -> list[Strategy]:
        return list(self._strategies.values())

    def __contains__(self, strategy_id: object) -> bool:
        return strategy_id in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)

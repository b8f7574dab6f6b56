from __future__ import annotations

import math
from dataclasses import dataclass

from loguru import logger

from engine.models import Side, Signal
from indicators.snapshot import IndicatorSnapshot
from risk.exits import ExitRule, build_exit_rule
from strategies.base import SUPPORTED_CONDITIONS, Strategy, StrategyCondition

_DIRECTION_FIELDS = ("supertrend.direction", "supertrend_direction")


@dataclass(frozen=True)
class Evaluation:
    confidence: float
    score_met: float
    score_total: float
    reasons: tuple[str, ...]
    side: Side

    @property
    def fired(self) -> bool:
        return self.side != "FLAT"


class StrategyEvaluator:
    """Scores weighted strategy conditions against an indicator snapshot.

    Confidence is the weight of the met conditions divided by the weight of
    all conditions, so it always lies in [0, 1]. Conditions the evaluator
    cannot resolve count as not met.
    """

    def __init__(self, threshold: float = 0.6) -> None:
        self.threshold = threshold

    def evaluate(
        self,
        strategy: Strategy,
        snapshot: IndicatorSnapshot,
        previous: IndicatorSnapshot | None = None,
    ) -> Evaluation:
        score_met = 0.0
        score_total = 0.0
        reasons: list[str] = []
        for condition in strategy.conditions:
            score_total += condition.weight
            if self.condition_met(condition, snapshot, previous):
                score_met += condition.weight
                reasons.append(condition.describe())

        confidence = score_met / score_total if score_total > 0 else 0.0
        confidence = min(1.0, max(0.0, confidence))
        side: Side = "FLAT"
        if score_total > 0 and confidence >= self.threshold:
            side = self._side_for(strategy, snapshot)
        return Evaluation(confidence, score_met, score_total, tuple(reasons), side)

    def evaluate_exit(
        self,
        strategy: Strategy,
        snapshot: IndicatorSnapshot,
        previous: IndicatorSnapshot | None = None,
    ) -> tuple[bool, tuple[str, ...]]:
        reasons = tuple(
            condition.describe()
            for condition in strategy.exit_conditions
            if self.condition_met(condition, snapshot, previous)
        )
        return bool(reasons), reasons

    def build_signal(
        self,
        strategy: Strategy,
        symbol: str,
        snapshot: IndicatorSnapshot,
        evaluation: Evaluation,
        ts: int,
        exit_rule: ExitRule | None = None,
    ) -> Signal:
        stop_loss = take_profit = None
        if evaluation.side != "FLAT":
            rule = exit_rule or build_exit_rule(strategy.risk.resolved_exit_rule())
            levels = rule.levels(evaluation.side, snapshot.price, snapshot.atr)
            stop_loss, take_profit = levels.stop_loss, levels.take_profit
        return Signal(
            id=f"{strategy.id}-{symbol}-{ts}",
            symbol=symbol,
            side=evaluation.side,
            confidence=evaluation.confidence,
            price=snapshot.price,
            ts=ts,
            strategy_id=strategy.id,
            reasons=evaluation.reasons,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk=strategy.risk.max_risk,
            indicators=snapshot.as_dict(),
        )

    def condition_met(
        self,
        condition: StrategyCondition,
        snapshot: IndicatorSnapshot,
        previous: IndicatorSnapshot | None = None,
    ) -> bool:
        operators = SUPPORTED_CONDITIONS.get(condition.indicator)
        if operators is None or condition.operator not in operators:
            logger.debug("Unsupported condition {} {}", condition.indicator, condition.operator)
            return False

        left = self._left(condition, snapshot)
        right = self._right(condition, snapshot)
        op = condition.operator

        if op in ("rising", "falling"):
            if previous is None:
                return False
            prev_left = self._left(condition, previous)
            if not _numbers(left, prev_left):
                return False
            return left > prev_left if op == "rising" else left < prev_left

        if op in ("crossover", "crossunder"):
            if previous is None:
                return False
            prev_left = self._left(condition, previous)
            prev_right = self._right(condition, previous)
            if not _numbers(left, right, prev_left, prev_right):
                return False
            if op == "crossover":
                return prev_left <= prev_right and left > right
            return prev_left >= prev_right and left < right

        if op == "=":
            if isinstance(left, str) or isinstance(right, str):
                return left == right
            if not _numbers(left, right):
                return False
            return math.isclose(left, right, rel_tol=1e-9, abs_tol=1e-12)

        if not _numbers(left, right):
            return False
        return left > right if op == ">" else left < right

    def _left(self, condition: StrategyCondition, snapshot: IndicatorSnapshot) -> float | str | None:
        if condition.indicator == "atr" and not isinstance(condition.value, str):
            if snapshot.price <= 0:
                return None
            return snapshot.atr / snapshot.price * 100.0
        return snapshot.value(condition.indicator)

    def _right(self, condition: StrategyCondition, snapshot: IndicatorSnapshot) -> float | str | None:
        value = condition.value
        if isinstance(value, str):
            if condition.indicator in _DIRECTION_FIELDS:
                return value
            return snapshot.value(value)
        if condition.indicator == "volume":
            if snapshot.avg_volume <= 0:
                return None
            return snapshot.avg_volume * value
        if condition.indicator == "volatility":
            return value * 0.01
        return float(value)

    def _side_for(self, strategy: Strategy, snapshot: IndicatorSnapshot) -> Side:
        if strategy.type == "mean-reversion":
            return "LONG"
        return "LONG" if snapshot.ema9 > snapshot.ema21 else "SHORT"


def _numbers(*values: object) -> bool:
    return all(isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v) for v in values)

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from engine.errors import InvalidConfig
from indicators.snapshot import IndicatorSnapshot

ConditionType = Literal["price", "indicator", "volume", "signal", "news"]
AlertOperator = Literal["above", "below", "crosses_above", "crosses_below", "equals"]


class AlertCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ConditionType
    symbol: str
    operator: AlertOperator
    value: float
    indicator: str | None = None
    timeframe: str | None = None

    def describe(self) -> str:
        subject = self.indicator if self.type == "indicator" else self.type
        return f"{self.symbol} {subject} {self.operator.replace('_', ' ')} {self.value:g}"


class AlertRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    conditions: tuple[AlertCondition, ...] = Field(min_length=1)
    logic: Literal["AND", "OR"] = "AND"
    cooldown_minutes: float = Field(default=0.0, ge=0)
    active: bool = True
    created: int = 0
    last_triggered: int | None = None
    trigger_count: int = 0

    @field_validator("logic", mode="before")
    @classmethod
    def _normalise_logic(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    def symbols(self) -> set[str]:
        return {c.symbol for c in self.conditions}


@dataclass(frozen=True)
class AlertEvent:
    id: str
    rule_id: str
    rule_name: str
    symbol: str
    message: str
    ts: int


def _observed(condition: AlertCondition, snapshot: IndicatorSnapshot | None) -> float | None:
    if snapshot is None:
        return None
    if condition.type == "price":
        return snapshot.price
    if condition.type == "volume":
        return snapshot.volume
    if condition.type == "indicator" and condition.indicator:
        value = snapshot.value(condition.indicator)
        if value is None:
            value = snapshot.value(condition.indicator.lower())
        return float(value) if isinstance(value, (int, float)) else None
    # signal and news conditions have no market observation behind them
    return None


def condition_met(
    condition: AlertCondition,
    snapshot: IndicatorSnapshot | None,
    previous: IndicatorSnapshot | None = None,
) -> bool:
    current = _observed(condition, snapshot)
    if current is None:
        return False
    op, target = condition.operator, condition.value
    if op == "above":
        return current > target
    if op == "below":
        return current < target
    if op == "equals":
        return math.isclose(current, target, rel_tol=1e-9, abs_tol=1e-12)
    before = _observed(condition, previous)
    if before is None:
        return False
    if op == "crosses_above":
        return before <= target < current
    return before >= target > current


class AlertEngine:
    """User-defined alert rules checked against the latest indicator snapshot of each symbol."""

    def __init__(self, history_cap: int = 500) -> None:
        self._rules: dict[str, AlertRule] = {}
        self._history: deque[AlertEvent] = deque(maxlen=history_cap)
        self._latest: dict[str, tuple[IndicatorSnapshot, IndicatorSnapshot | None]] = {}
        self._counter = 0
        self._event_counter = 0

    def create_rule(self, rule: dict[str, Any], now_ms: int = 0) -> AlertRule:
        self._counter += 1
        data = {**rule, "id": f"alert-{self._counter}", "created": now_ms, "trigger_count": 0, "last_triggered": None}
        created = self._validate(data)
        self._rules[created.id] = created
        logger.info("Alert rule {} '{}' created", created.id, created.name)
        return created

    def update_rule(self, rule_id: str, **updates: Any) -> AlertRule | None:
        rule = self._rules.get(rule_id)
        if rule is None:
            return None
        updates.pop("id", None)
        updated = self._validate({**rule.model_dump(), **updates})
        self._rules[rule_id] = updated
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def get_rule(self, rule_id: str) -> AlertRule | None:
        return self._rules.get(rule_id)

    def get_rules(self) -> list[AlertRule]:
        return list(self._rules.values())

    def get_history(self, limit: int = 50) -> list[AlertEvent]:
        return sorted(self._history, key=lambda e: e.ts, reverse=True)[:limit]

    def _validate(self, data: dict[str, Any]) -> AlertRule:
        try:
            return AlertRule.model_validate(data)
        except ValidationError as exc:
            raise InvalidConfig(f"Invalid alert rule: {exc.error_count()} error(s)", context={"name": data.get("name")}) from exc

    def evaluate(
        self,
        symbol: str,
        snapshot: IndicatorSnapshot,
        previous: IndicatorSnapshot | None,
        ts: int,
    ) -> list[AlertEvent]:
        self._latest[symbol] = (snapshot, previous)
        fired = []
        for rule in list(self._rules.values()):
            if not rule.active or symbol not in rule.symbols():
                continue
            if rule.last_triggered is not None and ts - rule.last_triggered < rule.cooldown_minutes * 60_000:
                continue
            results = [self._check(c) for c in rule.conditions]
            met = all(results) if rule.logic == "AND" else any(results)
            if met:
                fired.append(self._fire(rule, ts))
        return fired

    def _check(self, condition: AlertCondition) -> bool:
        snapshot, previous = self._latest.get(condition.symbol, (None, None))
        return condition_met(condition, snapshot, previous)

    def _fire(self, rule: AlertRule, ts: int) -> AlertEvent:
        self._event_counter += 1
        first = rule.conditions[0]
        event = AlertEvent(
            id=f"{rule.id}-{ts}-{self._event_counter}",
            rule_id=rule.id,
            rule_name=rule.name,
            symbol=first.symbol,
            message=first.describe(),
            ts=ts,
        )
        self._history.appendleft(event)
        self._rules[rule.id] = rule.model_copy(
            update={"last_triggered": ts, "trigger_count": rule.trigger_count + 1}
        )
        logger.info("Alert {} fired: {}", rule.name, event.message)
        return event

    def stats(self) -> dict[str, int]:
        rules = self._rules.values()
        return {
            "total_rules": len(self._rules),
            "active_rules": sum(1 for r in rules if r.active),
            "total_triggers": sum(r.trigger_count for r in rules),
            "history": len(self._history),
        }

    def clear(self) -> None:
        self._history.clear()
        self._latest.clear()

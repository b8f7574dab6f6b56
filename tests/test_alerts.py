import asyncio
from dataclasses import replace

import pytest

from engine.core import SignalEngine
from engine.errors import InvalidConfig
from engine.models import Candle, Tick
from indicators.snapshot import compute_snapshot
from services.alerts import AlertCondition, AlertEngine, condition_met
from strategies.base import StrategyRegistry

START = 1_700_000_000_000
MINUTE = 60_000

BASE = compute_snapshot([Candle(START + i * MINUTE, 100.0, 101.0, 99.0, 100.0, 10.0) for i in range(30)])


def _snap(**fields):
    return replace(BASE, **fields)


def _price_rule(value=100_000.0, operator="above", **extra):
    return {
        "name": "BTC price",
        "conditions": [{"type": "price", "symbol": "BTCUSDT", "operator": operator, "value": value}],
        **extra,
    }


def test_price_and_indicator_operators():
    above = AlertCondition(type="price", symbol="BTCUSDT", operator="above", value=100.0)
    assert condition_met(above, _snap(price=101.0))
    assert not condition_met(above, _snap(price=100.0))
    assert not condition_met(above, None)

    oversold = AlertCondition(type="indicator", symbol="ETHUSDT", operator="below", value=30, indicator="RSI")
    assert condition_met(oversold, _snap(rsi=25.0))
    assert not condition_met(oversold, _snap(rsi=35.0))

    heavy = AlertCondition(type="volume", symbol="BTCUSDT", operator="equals", value=42.0)
    assert condition_met(heavy, _snap(volume=42.0))


def test_crossings_need_previous_snapshot():
    cross = AlertCondition(type="price", symbol="BTCUSDT", operator="crosses_above", value=100.0)
    assert condition_met(cross, _snap(price=101.0), _snap(price=99.0))
    assert not condition_met(cross, _snap(price=101.0), _snap(price=100.5))
    assert not condition_met(cross, _snap(price=101.0), None)

    down = AlertCondition(type="indicator", symbol="BTCUSDT", operator="crosses_below", value=70, indicator="rsi")
    assert condition_met(down, _snap(rsi=65.0), _snap(rsi=72.0))


def test_signal_and_news_conditions_never_match():
    for kind in ("signal", "news"):
        condition = AlertCondition(type=kind, symbol="BTCUSDT", operator="above", value=0)
        assert not condition_met(condition, _snap(price=1.0))


def test_rule_fires_records_history_and_respects_cooldown():
    alerts = AlertEngine()
    rule = alerts.create_rule(_price_rule(cooldown_minutes=60))
    assert rule.trigger_count == 0

    [event] = alerts.evaluate("BTCUSDT", _snap(price=100_500.0), None, START)
    assert event.rule_id == rule.id
    assert event.message == "BTCUSDT price above 100000"
    assert alerts.evaluate("BTCUSDT", _snap(price=101_000.0), None, START + 30 * MINUTE) == []
    assert len(alerts.evaluate("BTCUSDT", _snap(price=101_000.0), None, START + 60 * MINUTE)) == 1

    assert alerts.get_rule(rule.id).trigger_count == 2
    assert [e.ts for e in alerts.get_history()] == [START + 60 * MINUTE, START]
    assert alerts.stats() == {"total_rules": 1, "active_rules": 1, "total_triggers": 2, "history": 2}


def test_inactive_rules_and_other_symbols_are_skipped():
    alerts = AlertEngine()
    alerts.create_rule(_price_rule(active=False))
    assert alerts.evaluate("BTCUSDT", _snap(price=200_000.0), None, START) == []
    alerts.create_rule(_price_rule())
    assert alerts.evaluate("ETHUSDT", _snap(price=200_000.0), None, START) == []


def test_and_or_logic_across_symbols():
    conditions = [
        {"type": "price", "symbol": "BTCUSDT", "operator": "above", "value": 100},
        {"type": "indicator", "symbol": "ETHUSDT", "operator": "below", "value": 30, "indicator": "rsi"},
    ]
    alerts = AlertEngine()
    both = alerts.create_rule({"name": "both", "conditions": conditions, "logic": "and"})
    either = alerts.create_rule({"name": "either", "conditions": conditions, "logic": "OR"})

    fired = alerts.evaluate("BTCUSDT", _snap(price=150.0), None, START)
    assert [e.rule_id for e in fired] == [either.id]

    fired = alerts.evaluate("ETHUSDT", _snap(rsi=20.0), None, START + MINUTE)
    assert {e.rule_id for e in fired} == {both.id, either.id}


def test_rule_crud():
    alerts = AlertEngine()
    rule = alerts.create_rule(_price_rule())
    updated = alerts.update_rule(rule.id, name="renamed", active=False)
    assert updated.name == "renamed" and updated.id == rule.id and not updated.active
    assert alerts.update_rule("missing", name="x") is None
    assert alerts.stats()["active_rules"] == 0

    with pytest.raises(InvalidConfig):
        alerts.update_rule(rule.id, logic="XOR")
    with pytest.raises(InvalidConfig):
        alerts.create_rule({"name": "empty", "conditions": []})

    assert alerts.delete_rule(rule.id)
    assert not alerts.delete_rule(rule.id)
    assert alerts.get_rules() == []


def test_history_is_bounded():
    alerts = AlertEngine(history_cap=2)
    alerts.create_rule(_price_rule(value=0))
    for n in range(4):
        alerts.evaluate("BTCUSDT", _snap(price=1.0), None, START + n * MINUTE)
    assert [e.ts for e in alerts.get_history()] == [START + 3 * MINUTE, START + 2 * MINUTE]
    assert alerts.stats()["total_triggers"] == 4


def test_engine_evaluates_alerts_on_each_snapshot():
    alerts = AlertEngine()
    rule = alerts.create_rule(_price_rule(value=105.0, cooldown_minutes=60))
    engine = SignalEngine(StrategyRegistry([]), alerts=alerts)

    async def feed():
        for n in range(40):
            await engine.on_tick(Tick(symbol="BTCUSDT", price=100.0 + n * 0.2, volume=10.0, ts=START + n * MINUTE))

    asyncio.run(feed())
    [event] = alerts.get_history()
    assert event.message == "BTCUSDT price above 105"
    assert alerts.get_rule(rule.id).trigger_count == 1

    engine.dispose()
    assert alerts.get_history() == []
    assert len(alerts.get_rules()) == 1

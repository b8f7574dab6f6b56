import dataclasses

import pytest

from engine.errors import InvalidConfig, UnknownStrategy
from engine.models import Candle
from indicators.snapshot import compute_snapshot
from strategies.base import RiskParameters, Strategy, StrategyCondition, StrategyRegistry, unsupported_conditions
from strategies.evaluator import StrategyEvaluator
from strategies.presets import MEAN_REVERSION, MOMENTUM_SCALPER, PRESET_STRATEGIES, default_registry


def _candles(closes, volume=1000.0):
    return [
        Candle(ts=1_700_000_000_000 + i * 60_000, open=c, high=c + 1, low=c - 1, close=c, volume=volume)
        for i, c in enumerate(closes)
    ]


def _rising_snapshot():
    return compute_snapshot(_candles([100.0 + i for i in range(100)]))


def test_presets_register_cleanly():
    registry = default_registry()
    assert len(registry) == len(PRESET_STRATEGIES)
    assert "momentum-scalper" in registry
    for strategy in PRESET_STRATEGIES:
        assert unsupported_conditions(strategy) == []


def test_registry_unknown_strategy():
    registry = StrategyRegistry()
    with pytest.raises(UnknownStrategy):
        registry.get("missing")
    assert registry.find("missing") is None


def test_registry_rejects_unsupported_conditions():
    registry = StrategyRegistry()
    bad_indicator = Strategy(
        id="bad",
        name="Bad",
        type="momentum",
        conditions=(StrategyCondition(indicator="moon_phase", operator=">", value=1),),
    )
    bad_operator = Strategy(
        id="bad-op",
        name="Bad operator",
        type="momentum",
        conditions=(StrategyCondition(indicator="volume", operator="crossover", value="avg_volume"),),
    )
    with pytest.raises(InvalidConfig):
        registry.add(bad_indicator)
    with pytest.raises(InvalidConfig):
        registry.add(bad_operator)
    assert len(registry) == 0


def test_operator_aliases_are_normalised():
    condition = StrategyCondition(indicator="ema9", operator="crosses-over", value="ema21", weight=0.5)
    assert condition.operator == "crossover"


def test_weight_must_be_in_unit_interval():
    with pytest.raises(ValueError):
        StrategyCondition(indicator="rsi", operator=">", value=50, weight=1.5)


def test_no_conditions_means_zero_confidence():
    evaluation = StrategyEvaluator().evaluate(Strategy(id="empty", name="Empty", type="momentum"), _rising_snapshot())
    assert evaluation.confidence == 0.0
    assert evaluation.side == "FLAT"
    assert not evaluation.fired


def test_momentum_fires_long_on_rising_prices():
    evaluation = StrategyEvaluator().evaluate(MOMENTUM_SCALPER, _rising_snapshot())
    assert 0.9 <= evaluation.confidence <= 1.0
    assert evaluation.side == "LONG"
    assert "ema9 > ema21" in evaluation.reasons


def test_unknown_condition_is_unmet_not_raised():
    strategy = Strategy(
        id="mixed",
        name="Mixed",
        type="momentum",
        conditions=(
            StrategyCondition(indicator="rsi", operator=">", value=50, weight=0.5),
            StrategyCondition(indicator="moon_phase", operator=">", value=1, weight=0.5),
        ),
    )
    evaluation = StrategyEvaluator().evaluate(strategy, _rising_snapshot())
    assert evaluation.confidence == 0.5
    assert evaluation.side == "FLAT"


def test_confidence_stays_in_unit_interval():
    evaluator = StrategyEvaluator()
    for closes in ([100.0] * 60, [100.0 + i for i in range(60)], [200.0 - i for i in range(60)]):
        snapshot = compute_snapshot(_candles(closes))
        for strategy in PRESET_STRATEGIES:
            assert 0.0 <= evaluator.evaluate(strategy, snapshot).confidence <= 1.0


def test_crossover_needs_previous_snapshot():
    evaluator = StrategyEvaluator()
    current = _rising_snapshot()
    before = dataclasses.replace(current, price=current.support - 1)
    after = dataclasses.replace(current, price=current.support + 1)
    condition = StrategyCondition(indicator="price", operator="crossover", value="support")
    assert evaluator.condition_met(condition, after, before)
    assert not evaluator.condition_met(condition, after, None)
    assert not evaluator.condition_met(condition, after, after)


def test_rising_and_direction_conditions():
    evaluator = StrategyEvaluator()
    current = _rising_snapshot()
    earlier = dataclasses.replace(current, rsi=current.rsi - 10)
    assert evaluator.condition_met(StrategyCondition(indicator="rsi", operator="rising"), current, earlier)
    assert not evaluator.condition_met(StrategyCondition(indicator="rsi", operator="falling"), current, earlier)
    direction = current.supertrend.direction
    assert evaluator.condition_met(StrategyCondition(indicator="supertrend.direction", operator="=", value=direction), current)


def test_volume_literal_is_multiple_of_average():
    evaluator = StrategyEvaluator()
    snapshot = dataclasses.replace(_rising_snapshot(), volume=3000.0, avg_volume=1000.0)
    assert evaluator.condition_met(StrategyCondition(indicator="volume", operator=">", value=2.5), snapshot)
    assert not evaluator.condition_met(StrategyCondition(indicator="volume", operator=">", value=3.5), snapshot)
    no_average = dataclasses.replace(snapshot, avg_volume=0.0)
    assert not evaluator.condition_met(StrategyCondition(indicator="volume", operator=">", value=0.5), no_average)


def test_exit_conditions_use_or_logic():
    evaluator = StrategyEvaluator()
    snapshot = dataclasses.replace(_rising_snapshot(), rsi=20.0)
    hit, reasons = evaluator.evaluate_exit(MOMENTUM_SCALPER, snapshot)
    assert hit
    assert reasons == ("rsi < 30",)


def test_mean_reversion_is_always_long():
    snapshot = dataclasses.replace(
        compute_snapshot(_candles([200.0 - i for i in range(60)])),
        volume=5000.0,
        avg_volume=1000.0,
    )
    evaluation = StrategyEvaluator().evaluate(MEAN_REVERSION, snapshot)
    assert evaluation.side == "LONG"


def test_build_signal_uses_exit_rule_levels():
    evaluator = StrategyEvaluator()
    snapshot = _rising_snapshot()
    evaluation = evaluator.evaluate(MOMENTUM_SCALPER, snapshot)
    signal = evaluator.build_signal(MOMENTUM_SCALPER, "BTCUSDT", snapshot, evaluation, ts=123)
    risk = snapshot.atr * 1.2
    assert signal.id == "momentum-scalper-BTCUSDT-123"
    assert signal.side == "LONG"
    assert signal.stop_loss == pytest.approx(snapshot.price - risk)
    assert signal.take_profit == pytest.approx(snapshot.price + risk * 1.5)
    assert signal.risk == MOMENTUM_SCALPER.risk.max_risk


def test_threshold_controls_side():
    strategy = Strategy(
        id="half",
        name="Half",
        type="momentum",
        conditions=(
            StrategyCondition(indicator="rsi", operator=">", value=50, weight=0.5),
            StrategyCondition(indicator="rsi", operator="<", value=0, weight=0.5),
        ),
        risk=RiskParameters(),
    )
    snapshot = _rising_snapshot()
    assert StrategyEvaluator(threshold=0.5).evaluate(strategy, snapshot).side == "LONG"
    assert StrategyEvaluator(threshold=0.6).evaluate(strategy, snapshot).side == "FLAT"

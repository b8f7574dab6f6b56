from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from engine.models import TradeSide
from strategies.base import ExitRuleConfig


@dataclass(frozen=True)
class ExitLevels:
    stop_loss: float | None
    take_profit: float | None


class ExitRule(ABC):
    @abstractmethod
    def levels(self, side: TradeSide, entry_price: float, atr: float) -> ExitLevels:
        raise NotImplementedError

    def check(self, side: TradeSide, price: float, levels: ExitLevels) -> str | None:
        if side == "LONG":
            if levels.stop_loss is not None and price <= levels.stop_loss:
                return "stop_loss"
            if levels.take_profit is not None and price >= levels.take_profit:
                return "take_profit"
        else:
            if levels.stop_loss is not None and price >= levels.stop_loss:
                return "stop_loss"
            if levels.take_profit is not None and price <= levels.take_profit:
                return "take_profit"
        return None


def _offset(side: TradeSide, price: float, distance: float) -> float:
    return price + distance if side == "LONG" else price - distance


class FixedPercentageExit(ExitRule):
    def __init__(self, stop_loss_pct: float = 0.05, take_profit_pct: float = 0.10) -> None:
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct

    def levels(self, side: TradeSide, entry_price: float, atr: float) -> ExitLevels:
        return ExitLevels(
            stop_loss=_offset(side, entry_price, -entry_price * self.stop_loss_pct),
            take_profit=_offset(side, entry_price, entry_price * self.take_profit_pct),
        )


class AtrMultipleExit(ExitRule):
    def __init__(self, stop_loss_atr: float = 1.5, take_profit_atr: float = 3.0) -> None:
        self.stop_loss_atr = stop_loss_atr
        self.take_profit_atr = take_profit_atr

    def levels(self, side: TradeSide, entry_price: float, atr: float) -> ExitLevels:
        if atr <= 0:
            return ExitLevels(None, None)
        return ExitLevels(
            stop_loss=_offset(side, entry_price, -atr * self.stop_loss_atr),
            take_profit=_offset(side, entry_price, atr * self.take_profit_atr),
        )


class RiskRewardExit(ExitRule):
    """Stop at an ATR multiple, target at `reward_ratio` times the stop distance."""

    def __init__(self, stop_loss_atr: float = 1.5, reward_ratio: float = 2.0) -> None:
        self.stop_loss_atr = stop_loss_atr
        self.reward_ratio = reward_ratio

    def levels(self, side: TradeSide, entry_price: float, atr: float) -> ExitLevels:
        if atr <= 0:
            return ExitLevels(None, None)
        risk = atr * self.stop_loss_atr
        return ExitLevels(
            stop_loss=_offset(side, entry_price, -risk),
            take_profit=_offset(side, entry_price, risk * self.reward_ratio),
        )


def build_exit_rule(config: ExitRuleConfig) -> ExitRule:
    if config.kind == "fixed_percentage":
        return FixedPercentageExit(config.stop_loss_pct, config.take_profit_pct)
    if config.kind == "atr_multiple":
        return AtrMultipleExit(config.stop_loss_atr, config.take_profit_atr)
    return RiskRewardExit(config.stop_loss_atr, config.reward_ratio)

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RiskDecision:
    allowed: bool
    reason: str | None
    qty: float | None


class RiskManager:
    def __init__(self, max_positions: int = 1, risk_per_trade: float = 0.02, cooldown_ms: int = 0) -> None:
        self.max_positions = max_positions
        self.risk_per_trade = risk_per_trade
        self.cooldown_ms = cooldown_ms

    def evaluate(
        self,
        price: float,
        capital: float,
        open_positions: int,
        ts: int,
        last_entry_ts: int | None = None,
        risk_per_trade: float | None = None,
    ) -> RiskDecision:
        if open_positions >= self.max_positions:
            return RiskDecision(False, "Max open positions reached", None)
        if last_entry_ts is not None and ts - last_entry_ts < self.cooldown_ms:
            return RiskDecision(False, "Cooldown active", None)
        if capital <= 0:
            return RiskDecision(False, "Capital exhausted", None)
        if price <= 0:
            return RiskDecision(False, "Invalid price", None)

        risk = self.risk_per_trade if risk_per_trade is None else risk_per_trade
        qty = capital * risk / price
        if qty <= 0:
            return RiskDecision(False, "Invalid position size", None)
        return RiskDecision(True, None, qty)

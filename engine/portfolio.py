from __future__ import annotations

import time
from collections import deque

from loguru import logger

from backtest.metrics import sharpe_ratio
from engine.models import PortfolioPosition, PortfolioStats, Signal
from risk.manager import RiskManager

_DAY_MS = 86_400_000


class PaperPortfolio:
    """Simulated positions opened from signals and marked to market on ticks.

    Only the last `history_cap` closed positions are kept; realized PnL, win
    and loss totals and the drawdown are tracked as running figures so the
    stats still cover every closed position.
    """

    def __init__(self, initial_value: float = 100000.0, max_open_positions: int = 10, history_cap: int = 1000) -> None:
        self.initial_value = initial_value
        self.risk = RiskManager(max_positions=max_open_positions)
        self._open: dict[str, PortfolioPosition] = {}
        self._closed: deque[PortfolioPosition] = deque(maxlen=history_cap)
        self._returns: deque[float] = deque(maxlen=history_cap)
        self._counter = 0
        self._reset_totals()

    def _reset_totals(self) -> None:
        self.realized_pnl = 0.0
        self._closed_count = 0
        self._wins = (0, 0.0)
        self._losses = (0, 0.0)
        self._peak = self.initial_value
        self._max_drawdown = 0.0

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self._open.values())

    def total_value(self) -> float:
        return self.initial_value + self.realized_pnl + self.unrealized_pnl

    def open_positions(self) -> list[PortfolioPosition]:
        return list(self._open.values())

    def closed_positions(self) -> list[PortfolioPosition]:
        return list(self._closed)

    def has_position(self, symbol: str, strategy_id: str) -> bool:
        return any(p.symbol == symbol and p.strategy_id == strategy_id for p in self._open.values())

    def open_position(self, signal: Signal, quantity: float | None = None) -> PortfolioPosition | None:
        if signal.side not in ("LONG", "SHORT"):
            return None
        if self.has_position(signal.symbol, signal.strategy_id):
            return None
        if quantity is None:
            decision = self.risk.evaluate(
                price=signal.price,
                capital=self.total_value(),
                open_positions=len(self._open),
                ts=signal.ts,
                risk_per_trade=signal.risk or None,
            )
            if not decision.allowed:
                logger.info("Paper position for {} skipped: {}", signal.symbol, decision.reason)
                return None
            quantity = decision.qty
        elif len(self._open) >= self.risk.max_positions:
            return None

        self._counter += 1
        position = PortfolioPosition(
            id=f"pos-{self._counter}",
            symbol=signal.symbol,
            side=signal.side,
            entry_price=signal.price,
            current_price=signal.price,
            quantity=quantity,
            entry_time=signal.ts,
            strategy_id=signal.strategy_id,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
        )
        self._open[position.id] = position
        logger.info("Opened paper {} {} x{:.6f} @ {}", position.side, position.symbol, quantity, position.entry_price)
        return position

    def mark_to_market(self, symbol: str, price: float, ts: int) -> list[PortfolioPosition]:
        closed = []
        for position in list(self._open.values()):
            if position.symbol != symbol:
                continue
            position.current_price = price
            diff = price - position.entry_price if position.side == "LONG" else position.entry_price - price
            position.unrealized_pnl = diff * position.quantity
            reason = self._exit_reason(position, price)
            if reason:
                self.close_position(position.id, ts=ts, reason=reason)
                closed.append(position)
        return closed

    def _exit_reason(self, position: PortfolioPosition, price: float) -> str | None:
        long = position.side == "LONG"
        if position.stop_loss is not None:
            if (long and price <= position.stop_loss) or (not long and price >= position.stop_loss):
                return "stop_loss"
        if position.take_profit is not None:
            if (long and price >= position.take_profit) or (not long and price <= position.take_profit):
                return "take_profit"
        return None

    def close_position(self, position_id: str, ts: int | None = None, reason: str = "manual") -> float:
        position = self._open.pop(position_id, None)
        if position is None:
            return 0.0
        pnl = position.unrealized_pnl
        position.realized_pnl = pnl
        position.unrealized_pnl = 0.0
        position.exit_time = ts if ts is not None else int(time.time() * 1000)
        position.exit_reason = reason
        self._closed.append(position)
        self._record_close(position)
        logger.info("Closed paper {} {} ({}): {:.2f}", position.side, position.symbol, reason, pnl)
        return pnl

    def _record_close(self, position: PortfolioPosition) -> None:
        pnl = position.realized_pnl
        self.realized_pnl += pnl
        self._closed_count += 1
        if pnl > 0:
            self._wins = (self._wins[0] + 1, self._wins[1] + pnl)
        elif pnl < 0:
            self._losses = (self._losses[0] + 1, self._losses[1] + pnl)
        notional = position.entry_price * position.quantity
        if notional > 0:
            self._returns.append(pnl / notional)

        equity = self.total_value()
        if equity >= self._peak:
            self._peak = equity
        elif self._peak > 0:
            self._max_drawdown = max(self._max_drawdown, min(1.0, (self._peak - equity) / self._peak))

    def stats(self, now_ms: int | None = None) -> PortfolioStats:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        day_start = now_ms - now_ms % _DAY_MS
        day_pnl = self.unrealized_pnl + sum(
            p.realized_pnl for p in self._closed if p.exit_time is not None and p.exit_time >= day_start
        )
        wins, win_sum = self._wins
        losses, loss_sum = self._losses
        total_pnl = self.realized_pnl + self.unrealized_pnl
        start_of_day_value = self.total_value() - day_pnl
        return PortfolioStats(
            total_value=self.total_value(),
            total_pnl=total_pnl,
            total_pnl_percent=total_pnl / self.initial_value if self.initial_value > 0 else 0.0,
            day_pnl=day_pnl,
            day_pnl_percent=day_pnl / start_of_day_value if start_of_day_value > 0 else 0.0,
            open_positions=len(self._open),
            closed_positions=self._closed_count,
            win_rate=wins / self._closed_count if self._closed_count else 0.0,
            avg_win=win_sum / wins if wins else 0.0,
            avg_loss=abs(loss_sum / losses) if losses else 0.0,
            sharpe_ratio=sharpe_ratio(list(self._returns)),
            max_drawdown=self._max_drawdown,
        )

    def clear(self) -> None:
        self._open.clear()
        self._closed.clear()
        self._returns.clear()
        self._reset_totals()

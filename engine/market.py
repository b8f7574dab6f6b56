from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Sequence

from loguru import logger

from engine.models import EnhancedTick, PriceValidation, Tick
from indicators import technical as ta

_MAX_VALIDATIONS = 1000


@dataclass(frozen=True)
class OrderBook:
    bids: tuple[tuple[float, float], ...]
    asks: tuple[tuple[float, float], ...]

    def best_bid(self) -> float | None:
        return max((p for p, _ in self.bids), default=None)

    def best_ask(self) -> float | None:
        return min((p for p, _ in self.asks), default=None)


def price_discrepancy(price: float, reference: float) -> float:
    if reference <= 0:
        return 0.0
    return abs(price - reference) / reference


def correct_price(price: float, reference: float, discrepancy: float, correction_threshold: float = 0.10) -> float:
    """Blend a suspicious price toward the reference; larger gaps lean harder on the reference."""
    if discrepancy > correction_threshold:
        return price * 0.3 + reference * 0.7
    return price * 0.7 + reference * 0.3


def spread_fraction(symbol: str) -> float:
    if "USDT" in symbol:
        return 0.0001
    if "USD" in symbol:
        return 0.00005
    return 0.0002


def estimate_spread(symbol: str, price: float, book: OrderBook | None = None) -> float:
    if book is not None:
        bid, ask = book.best_bid(), book.best_ask()
        if bid is not None and ask is not None and ask >= bid:
            return ask - bid
    return price * spread_fraction(symbol)


def estimate_liquidity(volumes: Sequence[float], price: float) -> float:
    if not volumes:
        return 0.0
    return sum(volumes) / len(volumes) * price


class MarketState:
    """Per-symbol bounded tick windows with price validation."""

    def __init__(
        self,
        window: int = 100,
        discrepancy_threshold: float = 0.05,
        correction_threshold: float = 0.10,
        reference_prices: dict[str, float] | None = None,
    ) -> None:
        self.window_size = window
        self.discrepancy_threshold = discrepancy_threshold
        self.correction_threshold = correction_threshold
        self._reference: dict[str, float] = dict(reference_prices or {})
        self._ticks: dict[str, deque[EnhancedTick]] = {}
        self._last_ts: dict[str, int] = {}
        self._books: dict[str, OrderBook] = {}
        self._validations: deque[PriceValidation] = deque(maxlen=_MAX_VALIDATIONS)
        self.rejected_ticks = 0

    def reference_price(self, symbol: str) -> float | None:
        return self._reference.get(symbol)

    def ingest(self, tick: Tick) -> EnhancedTick | None:
        last_ts = self._last_ts.get(tick.symbol)
        if last_ts is not None and tick.ts <= last_ts:
            self.rejected_ticks += 1
            logger.warning("Rejected tick for {} at {} (last accepted {})", tick.symbol, tick.ts, last_ts)
            return None
        if tick.price <= 0:
            self.rejected_ticks += 1
            logger.warning("Rejected tick for {} with non-positive price {}", tick.symbol, tick.price)
            return None

        reference = self._reference.get(tick.symbol, tick.price)
        discrepancy = price_discrepancy(tick.price, reference)
        price = tick.price
        if discrepancy > self.discrepancy_threshold:
            logger.warning("Price discrepancy for {}: {:.2%} from {}", tick.symbol, discrepancy, reference)
            self._validations.append(
                PriceValidation(
                    symbol=tick.symbol,
                    expected_price=reference,
                    actual_price=tick.price,
                    discrepancy=discrepancy,
                    ts=tick.ts,
                )
            )
            price = correct_price(tick.price, reference, discrepancy, self.correction_threshold)

        history = self._ticks.setdefault(tick.symbol, deque(maxlen=self.window_size))
        closes = [t.close for t in history] + [price]
        volumes = [t.volume for t in history] + [tick.volume]
        open_ = tick.open if tick.open is not None else (history[-1].close if history else price)
        enhanced = EnhancedTick(
            symbol=tick.symbol,
            ts=tick.ts,
            open=open_,
            high=max(tick.high if tick.high is not None else price, price),
            low=min(tick.low if tick.low is not None else price, price),
            close=price,
            volume=tick.volume,
            spread=estimate_spread(tick.symbol, price, self._books.get(tick.symbol)),
            mid_price=price,
            liquidity=estimate_liquidity(volumes, price),
            volatility=ta.volatility(closes),
            validated=discrepancy <= self.discrepancy_threshold,
        )
        history.append(enhanced)
        self._last_ts[tick.symbol] = tick.ts
        self._reference[tick.symbol] = price
        return enhanced

    def window(self, symbol: str) -> tuple[EnhancedTick, ...]:
        return tuple(self._ticks.get(symbol, ()))

    def symbols(self) -> list[str]:
        return list(self._ticks)

    def update_order_book(self, symbol: str, bids: Sequence[tuple[float, float]], asks: Sequence[tuple[float, float]]) -> None:
        self._books[symbol] = OrderBook(bids=tuple(bids), asks=tuple(asks))

    def price_validations(self, limit: int = 50) -> list[PriceValidation]:
        return list(self._validations)[-limit:]

    def discrepancy_stats(self) -> dict[str, float]:
        if not self._validations:
            return {"avg_discrepancy_pct": 0.0, "max_discrepancy_pct": 0.0, "total_validations": 0}
        values = [v.discrepancy for v in self._validations]
        return {
            "avg_discrepancy_pct": sum(values) / len(values) * 100,
            "max_discrepancy_pct": max(values) * 100,
            "total_validations": len(values),
        }

    def clear(self) -> None:
        self._ticks.clear()
        self._last_ts.clear()
        self._books.clear()
        self._validations.clear()

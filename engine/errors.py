from __future__ import annotations

from typing import Any

from loguru import logger


class TradingPlatformError(Exception):
    code = "TRADING_PLATFORM_ERROR"

    def __init__(self, message: str, code: str | None = None, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class DataUnavailable(TradingPlatformError):
    code = "DATA_UNAVAILABLE"


class UnknownStrategy(TradingPlatformError):
    code = "UNKNOWN_STRATEGY"


class InvalidConfig(TradingPlatformError):
    code = "INVALID_CONFIG"


class PersistenceFailure(TradingPlatformError):
    code = "PERSISTENCE_FAILURE"


class BacktestCancelled(TradingPlatformError):
    code = "BACKTEST_CANCELLED"


def handle_error(exc: BaseException, context: str | None = None) -> TradingPlatformError:
    """Normalise any exception into a TradingPlatformError and log it."""
    logger.error("Error in {}: {}", context or "unknown", exc)
    if isinstance(exc, TradingPlatformError):
        return exc
    return TradingPlatformError(str(exc) or exc.__class__.__name__, "UNKNOWN_ERROR", {"context": context, "original": exc.__class__.__name__})

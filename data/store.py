from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import psycopg
from psycopg.rows import dict_row

from engine.errors import PersistenceFailure
from engine.models import Signal

if TYPE_CHECKING:
    from backtest.runner import BacktestResult


_DAY_MS = 86_400_000
_SIGNAL_COLUMNS = (
    "id, symbol, side, confidence, price, ts, strategy_id, reasons, "
    "stop_loss, take_profit, time_horizon, risk, indicators, created_at"
)
_RESULT_COLUMNS = (
    "id, strategy_id, strategy_name, symbol, timeframe, start_ms, end_ms, total_return, "
    "sharpe_ratio, max_drawdown, win_rate, total_trades, profit_factor, payload, created_at"
)


@contextmanager
def _persistence(operation: str) -> Iterator[None]:
    try:
        yield
    except (sqlite3.Error, psycopg.Error) as exc:
        raise PersistenceFailure(f"Failed to {operation}", context={"error": str(exc)}) from exc


def _now_ms() -> int:
    return int(time.time() * 1000)


def _signal_params(signal: Signal) -> tuple[Any, ...]:
    return (
        signal.id,
        signal.symbol,
        signal.side,
        signal.confidence,
        signal.price,
        signal.ts,
        signal.strategy_id,
        json.dumps(list(signal.reasons)),
        signal.stop_loss,
        signal.take_profit,
        signal.time_horizon,
        signal.risk,
        json.dumps(signal.indicators, default=str),
        _now_ms(),
    )


def _signal_row(row: Any) -> dict[str, Any]:
    data = dict(row)
    data["reasons"] = json.loads(data["reasons"] or "[]")
    data["indicators"] = json.loads(data["indicators"] or "{}")
    return data


def _result_params(result: BacktestResult) -> tuple[Any, ...]:
    perf = result.performance
    return (
        result.id,
        result.config.strategy_id,
        result.strategy_name,
        result.config.symbol,
        result.config.timeframe,
        result.config.start_ms,
        result.config.end_ms,
        perf.total_return,
        perf.sharpe_ratio,
        perf.max_drawdown,
        perf.win_rate,
        perf.total_trades,
        perf.profit_factor,
        json.dumps(result.to_dict()),
        _now_ms(),
    )


def _result_row(row: Any) -> dict[str, Any]:
    data = dict(row)
    data["payload"] = json.loads(data["payload"])
    return data


class BaseStore:
    def set_setting(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def get_setting(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def all_settings(self) -> dict[str, Any]:
        raise NotImplementedError

    def store_signal(self, signal: Signal) -> None:
        raise NotImplementedError

    def list_signals(self, limit: int = 50, symbol: str | None = None, strategy_id: str | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def signal_statistics(self, days: int = 7) -> dict[str, Any]:
        raise NotImplementedError

    def cleanup_old_signals(self, days_to_keep: int = 30) -> int:
        raise NotImplementedError

    def store_backtest_result(self, result: BacktestResult) -> None:
        raise NotImplementedError

    def list_backtest_results(self, limit: int = 20) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_backtest_result(self, result_id: str) -> dict[str, Any] | None:
        raise NotImplementedError


class SQLiteStore(BaseStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with _persistence("create schema"), self._connect() as conn:
            conn.executescript(schema_path.read_text())

    def set_setting(self, key: str, value: Any) -> None:
        with _persistence("store setting"), self._connect() as conn:
            conn.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (key, json.dumps(value), _now_ms()),
            )

    def get_setting(self, key: str, default: Any = None) -> Any:
        with _persistence("read setting"), self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
            if not row:
                return default
            return json.loads(row["value"])

    def all_settings(self) -> dict[str, Any]:
        with _persistence("read settings"), self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
            return {r["key"]: json.loads(r["value"]) for r in rows}

    def store_signal(self, signal: Signal) -> None:
        with _persistence("store signal"), self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO signals ({_SIGNAL_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _signal_params(signal),
            )

    def list_signals(self, limit: int = 50, symbol: str | None = None, strategy_id: str | None = None) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if symbol:
            clauses.append("symbol=?")
            params.append(symbol)
        if strategy_id:
            clauses.append("strategy_id=?")
            params.append(strategy_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with _persistence("list signals"), self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_SIGNAL_COLUMNS} FROM signals {where} ORDER BY ts DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            return [_signal_row(r) for r in rows]

    def signal_statistics(self, days: int = 7) -> dict[str, Any]:
        since = _now_ms() - days * _DAY_MS
        with _persistence("compute signal statistics"), self._connect() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) AS total, "
                "SUM(CASE WHEN side='LONG' THEN 1 ELSE 0 END) AS long_count, "
                "SUM(CASE WHEN side='SHORT' THEN 1 ELSE 0 END) AS short_count, "
                "AVG(confidence) AS avg_confidence "
                "FROM signals WHERE ts >= ?",
                (since,),
            ).fetchone()
            symbols = conn.execute(
                "SELECT symbol, COUNT(*) AS count FROM signals WHERE ts >= ? GROUP BY symbol ORDER BY count DESC, symbol LIMIT 5",
                (since,),
            ).fetchall()
            strategies = conn.execute(
                "SELECT strategy_id, COUNT(*) AS count FROM signals WHERE ts >= ? GROUP BY strategy_id ORDER BY count DESC, strategy_id LIMIT 5",
                (since,),
            ).fetchall()
        return _statistics(dict(totals), [dict(r) for r in symbols], [dict(r) for r in strategies])

    def cleanup_old_signals(self, days_to_keep: int = 30) -> int:
        cutoff = _now_ms() - days_to_keep * _DAY_MS
        with _persistence("clean up signals"), self._connect() as conn:
            cur = conn.execute("DELETE FROM signals WHERE ts < ?", (cutoff,))
            return cur.rowcount

    def store_backtest_result(self, result: BacktestResult) -> None:
        with _persistence("store backtest result"), self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO backtest_results ({_RESULT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _result_params(result),
            )

    def list_backtest_results(self, limit: int = 20) -> list[dict[str, Any]]:
        with _persistence("list backtest results"), self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_RESULT_COLUMNS} FROM backtest_results ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [_result_row(r) for r in rows]

    def get_backtest_result(self, result_id: str) -> dict[str, Any] | None:
        with _persistence("read backtest result"), self._connect() as conn:
            row = conn.execute(
                f"SELECT {_RESULT_COLUMNS} FROM backtest_results WHERE id=?",
                (result_id,),
            ).fetchone()
            return _result_row(row) if row else None


class PostgresStore(BaseStore):
    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self.dsn, row_factory=dict_row)

    def _ensure_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema_pg.sql")
        with _persistence("create schema"), self._connect() as conn:
            statements = [s.strip() for s in schema_path.read_text().split(";") if s.strip()]
            for stmt in statements:
                conn.execute(stmt)

    def set_setting(self, key: str, value: Any) -> None:
        with _persistence("store setting"), self._connect() as conn:
            conn.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (%s, %s, %s) "
                "ON CONFLICT (key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (key, json.dumps(value), _now_ms()),
            )

    def get_setting(self, key: str, default: Any = None) -> Any:
        with _persistence("read setting"), self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=%s", (key,)).fetchone()
            if not row:
                return default
            return json.loads(row["value"])

    def all_settings(self) -> dict[str, Any]:
        with _persistence("read settings"), self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
            return {r["key"]: json.loads(r["value"]) for r in rows}

    def store_signal(self, signal: Signal) -> None:
        with _persistence("store signal"), self._connect() as conn:
            conn.execute(
                f"INSERT INTO signals ({_SIGNAL_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s) "
                "ON CONFLICT (id) DO NOTHING",
                _signal_params(signal),
            )

    def list_signals(self, limit: int = 50, symbol: str | None = None, strategy_id: str | None = None) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if symbol:
            clauses.append("symbol=%s")
            params.append(symbol)
        if strategy_id:
            clauses.append("strategy_id=%s")
            params.append(strategy_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with _persistence("list signals"), self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_SIGNAL_COLUMNS} FROM signals {where} ORDER BY ts DESC LIMIT %s",
                (*params, limit),
            ).fetchall()
            return [_signal_row(r) for r in rows]

    def signal_statistics(self, days: int = 7) -> dict[str, Any]:
        since = _now_ms() - days * _DAY_MS
        with _persistence("compute signal statistics"), self._connect() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) AS total, "
                "SUM(CASE WHEN side='LONG' THEN 1 ELSE 0 END) AS long_count, "
                "SUM(CASE WHEN side='SHORT' THEN 1 ELSE 0 END) AS short_count, "
                "AVG(confidence) AS avg_confidence "
                "FROM signals WHERE ts >= %s",
                (since,),
            ).fetchone()
            symbols = conn.execute(
                "SELECT symbol, COUNT(*) AS count FROM signals WHERE ts >= %s GROUP BY symbol ORDER BY count DESC, symbol LIMIT 5",
                (since,),
            ).fetchall()
            strategies = conn.execute(
                "SELECT strategy_id, COUNT(*) AS count FROM signals WHERE ts >= %s GROUP BY strategy_id ORDER BY count DESC, strategy_id LIMIT 5",
                (since,),
            ).fetchall()
        return _statistics(dict(totals), [dict(r) for r in symbols], [dict(r) for r in strategies])

    def cleanup_old_signals(self, days_to_keep: int = 30) -> int:
        cutoff = _now_ms() - days_to_keep * _DAY_MS
        with _persistence("clean up signals"), self._connect() as conn:
            cur = conn.execute("DELETE FROM signals WHERE ts < %s", (cutoff,))
            return cur.rowcount

    def store_backtest_result(self, result: BacktestResult) -> None:
        with _persistence("store backtest result"), self._connect() as conn:
            conn.execute(
                f"INSERT INTO backtest_results ({_RESULT_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s) "
                "ON CONFLICT (id) DO UPDATE SET payload=excluded.payload",
                _result_params(result),
            )

    def list_backtest_results(self, limit: int = 20) -> list[dict[str, Any]]:
        with _persistence("list backtest results"), self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_RESULT_COLUMNS} FROM backtest_results ORDER BY created_at DESC LIMIT %s",
                (limit,),
            ).fetchall()
            return [_result_row(r) for r in rows]

    def get_backtest_result(self, result_id: str) -> dict[str, Any] | None:
        with _persistence("read backtest result"), self._connect() as conn:
            row = conn.execute(
                f"SELECT {_RESULT_COLUMNS} FROM backtest_results WHERE id=%s",
                (result_id,),
            ).fetchone()
            return _result_row(row) if row else None


def _statistics(totals: dict[str, Any], symbols: list[dict[str, Any]], strategies: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "total": int(totals.get("total") or 0),
        "long": int(totals.get("long_count") or 0),
        "short": int(totals.get("short_count") or 0),
        "avg_confidence": float(totals.get("avg_confidence") or 0.0),
        "top_symbols": [(r["symbol"], int(r["count"])) for r in symbols],
        "top_strategies": [(r["strategy_id"], int(r["count"])) for r in strategies],
    }


def create_store(database_url: str | None, sqlite_path: str) -> BaseStore:
    if database_url:
        return PostgresStore(database_url)
    return SQLiteStore(sqlite_path)

import asyncio

import pytest

from adapters.binance_spot import BinanceHistoricalAdapter
from adapters.csv_file import CsvDataAdapter, load_candles
from adapters.simulation import SimulatedDataAdapter
from engine.errors import DataUnavailable

HOUR = 3_600_000
START = 1_700_000_000_000


class _FakeClient:
    def __init__(self, klines=None, error=None):
        self.klines = klines or []
        self.error = error
        self.calls = []

    def get_historical_klines(self, symbol, interval, start, end):
        self.calls.append((symbol, interval, start, end))
        if self.error:
            raise self.error
        return self.klines

    def get_klines(self, symbol, interval, limit):
        self.calls.append((symbol, interval, limit))
        if self.error:
            raise self.error
        return self.klines[-limit:]


def _kline(ts, close):
    return [ts, str(close - 1), str(close + 2), str(close - 2), str(close), "12.5", ts + HOUR - 1, "0", 10, "0", "0", "0"]


def _write_csv(path, rows, header="timestamp,open,high,low,close,volume"):
    path.write_text(header + "\n" + "\n".join(",".join(str(v) for v in row) for row in rows) + "\n")


def test_csv_seconds_are_widened_to_milliseconds(tmp_path):
    csv_path = tmp_path / "btc.csv"
    _write_csv(csv_path, [(1_700_003_600, 2, 3, 1, 2.5, 10), (1_700_000_000, 1, 2, 0.5, 1.5, 20)])
    candles = load_candles(csv_path)
    assert [c.ts for c in candles] == [1_700_000_000_000, 1_700_003_600_000]
    assert candles[0].close == 1.5
    assert candles[1].volume == 10.0


def test_csv_accepts_iso_dates_and_missing_volume(tmp_path):
    csv_path = tmp_path / "btc.csv"
    _write_csv(
        csv_path,
        [("2024-01-01T00:00:00Z", 1, 2, 0.5, 1.5), ("2024-01-01T01:00:00Z", 1.5, 2, 1, 1.8)],
        header="Date,Open,High,Low,Close",
    )
    candles = load_candles(csv_path)
    assert candles[0].ts == 1_704_067_200_000
    assert candles[1].ts - candles[0].ts == HOUR
    assert candles[0].volume == 0.0


def test_csv_unreadable_timestamps(tmp_path):
    csv_path = tmp_path / "bad_dates.csv"
    _write_csv(csv_path, [("not-a-date", 1, 2, 0.5, 1.5, 5)])
    with pytest.raises(DataUnavailable):
        load_candles(csv_path)


def test_csv_adapter_reads_iso_dates(tmp_path):
    _write_csv(
        tmp_path / "SOLUSDT_1h.csv",
        [("2024-01-01 00:00:00", 1, 2, 0.5, 1.5, 5), ("2024-01-01 01:00:00", 1.5, 2, 1, 1.8, 6)],
    )
    adapter = CsvDataAdapter(str(tmp_path))
    candles = asyncio.run(adapter.fetch_candles("SOLUSDT", "1h", 1_704_067_200_000, 1_704_067_200_000 + HOUR))
    assert [c.ts for c in candles] == [1_704_067_200_000, 1_704_067_200_000 + HOUR]


def test_csv_missing_columns(tmp_path):
    csv_path = tmp_path / "bad.csv"
    _write_csv(csv_path, [(1, 2)], header="timestamp,close")
    with pytest.raises(DataUnavailable):
        load_candles(csv_path)


def test_csv_adapter_filters_range(tmp_path):
    csv_path = tmp_path / "btc.csv"
    _write_csv(csv_path, [(START + i * HOUR, 1, 2, 0.5, 1 + i, 5) for i in range(10)])
    adapter = CsvDataAdapter(str(csv_path))

    candles = asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START + 2 * HOUR, START + 4 * HOUR))
    assert [c.close for c in candles] == [3.0, 4.0, 5.0]
    latest = asyncio.run(adapter.fetch_latest("BTCUSDT", "1h", limit=2))
    assert [c.close for c in latest] == [9.0, 10.0]
    with pytest.raises(DataUnavailable):
        asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START + 20 * HOUR, START + 30 * HOUR))


def test_csv_adapter_directory_mode(tmp_path):
    _write_csv(tmp_path / "ETHUSDT_1h.csv", [(START, 1, 2, 0.5, 1.5, 5)])
    adapter = CsvDataAdapter(str(tmp_path))
    candles = asyncio.run(adapter.fetch_candles("ETHUSDT", "1h", START, START + HOUR))
    assert len(candles) == 1
    with pytest.raises(DataUnavailable):
        asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START, START + HOUR))


def test_simulation_is_deterministic_and_aligned():
    adapter = SimulatedDataAdapter(seed=7)
    first = adapter.generate("BTCUSDT", "1h", START, START + 48 * HOUR)
    second = adapter.generate("BTCUSDT", "1h", START, START + 48 * HOUR)
    assert first == second
    assert all(c.ts % HOUR == 0 for c in first)
    assert all(b.ts - a.ts == HOUR for a, b in zip(first, first[1:]))
    assert all(c.low <= min(c.open, c.close) and c.high >= max(c.open, c.close) for c in first)
    assert first[0].ts >= START

    other = SimulatedDataAdapter(seed=8).generate("BTCUSDT", "1h", START, START + 48 * HOUR)
    assert [c.close for c in other] != [c.close for c in first]


def test_simulation_empty_range():
    adapter = SimulatedDataAdapter()
    with pytest.raises(DataUnavailable):
        asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START + 10, START + 20))


def test_simulation_latest_window():
    candles = asyncio.run(SimulatedDataAdapter().fetch_latest("ETHUSDT", "5m", limit=30))
    assert len(candles) == 30


def test_binance_adapter_maps_klines():
    client = _FakeClient([_kline(START, 100.0), _kline(START + HOUR, 101.0)])
    adapter = BinanceHistoricalAdapter(client=client)
    candles = asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START, START + HOUR))
    assert [c.close for c in candles] == [100.0, 101.0]
    assert candles[0].high == 102.0
    assert candles[0].volume == 12.5
    assert client.calls[0] == ("BTCUSDT", "1h", START, START + HOUR)


def test_binance_adapter_errors_become_data_unavailable():
    adapter = BinanceHistoricalAdapter(client=_FakeClient(error=OSError("network down")))
    with pytest.raises(DataUnavailable) as excinfo:
        asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START, START + HOUR))
    assert excinfo.value.context["symbol"] == "BTCUSDT"
    with pytest.raises(DataUnavailable):
        asyncio.run(adapter.fetch_latest("BTCUSDT", "1h"))


def test_binance_adapter_empty_and_unsupported():
    adapter = BinanceHistoricalAdapter(client=_FakeClient([]))
    with pytest.raises(DataUnavailable):
        asyncio.run(adapter.fetch_candles("BTCUSDT", "1h", START, START + HOUR))
    with pytest.raises(ValueError):
        asyncio.run(adapter.fetch_candles("BTCUSDT", "2w", START, START + HOUR))

import logging
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from pipeline.candles import (
    Candle,
    CandleDataError,
    CandleStream,
    as_utc,
    check_candle_spacing,
    load_candles_csv,
    load_candles_frame,
)

_T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _candle(day: int, close: float = 100.0) -> Candle:
    return Candle(timestamp=_T0 + timedelta(days=day), open=close, high=close, low=close, close=close)


def _write_csv(path, rows: list[str], header: str = "time,open,high,low,close,volume") -> None:
    path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")


class TestCandleStream:
    def test_yields_in_order_then_done(self) -> None:
        stream = CandleStream([_candle(0), _candle(1), _candle(2)])
        assert not stream.done
        assert [c.timestamp.day for c in stream] == [1, 2, 3]
        assert stream.done
        assert stream.emitted == 3

    def test_cannot_restart(self) -> None:
        stream = CandleStream([_candle(0), _candle(1)])
        assert len(list(stream)) == 2
        assert list(stream) == []

    def test_is_lazy(self) -> None:
        pulled: list[int] = []

        def source():
            for day in range(3):
                pulled.append(day)
                yield _candle(day)

        stream = CandleStream(source())
        assert pulled == []
        next(stream)
        assert pulled == [0]

    def test_rejects_non_increasing_timestamps(self) -> None:
        stream = CandleStream([_candle(1), _candle(1)])
        next(stream)
        with pytest.raises(CandleDataError, match="Non-monotonic"):
            next(stream)

    def test_rejects_non_candle_items(self) -> None:
        with pytest.raises(CandleDataError):
            next(CandleStream([{"close": 1.0}]))

    def test_close_stops_iteration(self) -> None:
        stream = CandleStream([_candle(0), _candle(1)])
        next(stream)
        stream.close()
        assert stream.done
        assert list(stream) == []

    def test_from_dataframe(self) -> None:
        frame = pd.DataFrame(
            {
                "timestamp": ["2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"],
                "open": [1.0, 2.0],
                "high": [1.5, 2.5],
                "low": [0.5, 1.5],
                "close": [1.2, 2.2],
            }
        )
        candles = list(CandleStream.from_dataframe(frame))
        assert [c.close for c in candles] == [1.2, 2.2]
        assert candles[0].volume == 0.0
        assert candles[0].timestamp == _T0

    def test_from_dataframe_requires_price_columns(self) -> None:
        frame = pd.DataFrame({"timestamp": ["2024-01-01"], "close": [1.0]})
        with pytest.raises(CandleDataError, match="missing"):
            list(CandleStream.from_dataframe(frame))


    def test_mixed_naive_and_aware_candles_are_all_utc(self) -> None:
        naive = Candle(timestamp=datetime(2024, 1, 1), open=1.0, high=1.0, low=1.0, close=1.0)
        aware = _candle(1)
        assert naive.timestamp == _T0
        assert naive.timestamp.tzinfo is not None
        stamps = [c.timestamp for c in CandleStream([naive, aware])]
        assert stamps == [_T0, _T0 + timedelta(days=1)]

    def test_candle_rejects_unparseable_timestamp(self) -> None:
        with pytest.raises(CandleDataError):
            Candle(timestamp=12345, open=1.0, high=1.0, low=1.0, close=1.0)


class TestLoadCandlesCsv:
    def test_sorts_dedupes_and_skips_bad_rows(self, tmp_path, caplog) -> None:
        path = tmp_path / "candles.csv"
        _write_csv(
            path,
            [
                "2024-01-03T00:00:00Z,3,3,3,3,30",
                "2024-01-01T00:00:00Z,1,1,1,1,10",
                "2024-01-02T00:00:00Z,2,2,2,2,20",
                "2024-01-02T00:00:00Z,9,9,9,9,90",
                "garbage,4,4,4,4,40",
            ],
        )
        with caplog.at_level(logging.WARNING, logger="pipeline.candles"):
            frame = load_candles_frame(path)

        assert frame["close"].tolist() == [1.0, 9.0, 3.0]
        assert list(frame.columns) == ["timestamp", "open", "high", "low", "close", "volume"]
        assert "invalid timestamps" in caplog.text
        assert "duplicate" in caplog.text

    def test_clips_to_window(self, tmp_path) -> None:
        path = tmp_path / "candles.csv"
        _write_csv(path, [f"2024-01-0{day}T00:00:00Z,{day},{day},{day},{day},0" for day in range(1, 6)])
        stream = load_candles_csv(path, start_utc="2024-01-02T00:00:00Z", end_utc="2024-01-04T00:00:00Z")
        assert [c.close for c in stream] == [2.0, 3.0, 4.0]

    def test_empty_window_is_an_error(self, tmp_path) -> None:
        path = tmp_path / "candles.csv"
        _write_csv(path, ["2024-01-01T00:00:00Z,1,1,1,1,0"])
        with pytest.raises(CandleDataError):
            load_candles_csv(path, start_utc="2025-01-01")

    def test_warns_when_candles_are_finer_than_timeframe(self, tmp_path, caplog) -> None:
        path = tmp_path / "candles.csv"
        _write_csv(path, [f"2024-01-01T0{hour}:00:00Z,1,1,1,1,0" for hour in range(4)])
        with caplog.at_level(logging.WARNING, logger="pipeline.candles"):
            frame = load_candles_frame(path, timeframe="1d")
        assert len(frame) == 4
        assert "closer than one D bar" in caplog.text

    def test_longer_gaps_than_timeframe_are_quiet(self, tmp_path, caplog) -> None:
        path = tmp_path / "candles.csv"
        _write_csv(path, ["2024-01-01T00:00:00Z,1,1,1,1,0", "2024-01-02T00:00:00Z,1,1,1,1,0", "2024-01-05T00:00:00Z,1,1,1,1,0"])
        with caplog.at_level(logging.WARNING, logger="pipeline.candles"):
            assert check_candle_spacing(load_candles_frame(path), "D") == 0
        assert caplog.text == ""

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_candles_csv(tmp_path / "nope.csv")

    def test_missing_time_column(self, tmp_path) -> None:
        path = tmp_path / "candles.csv"
        _write_csv(path, ["1,1,1,1"], header="open,high,low,close")
        with pytest.raises(CandleDataError):
            load_candles_frame(path)


def test_as_utc_treats_naive_values_as_utc() -> None:
    assert as_utc("2024-01-01T00:00:00") == _T0
    assert as_utc(pd.Timestamp("2024-01-01T01:00:00+01:00")) == _T0
    with pytest.raises(CandleDataError):
        as_utc(12345)

"""Candle model, lazy candle stream and CSV/DataFrame candle sources."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from core.market_metadata import normalize_timeframe, timeframe_duration

logger = logging.getLogger(__name__)

_PRICE_COLUMNS: tuple[str, ...] = ("open", "high", "low", "close", "volume")
_TIME_COLUMNS: tuple[str, ...] = ("timestamp", "time", "ts", "date")


class CandleDataError(ValueError):
    """Malformed or out-of-order market data rejected at the stream boundary."""


def as_utc(value: Any) -> datetime:
    """Coerce datetime-like values to a timezone-aware UTC datetime."""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise CandleDataError(f"Unsupported timestamp value: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar; the unit of simulated time. Naive timestamps are taken as UTC."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "open": float(self.open),
            "high": float(self.high),
            "low": float(self.low),
            "close": float(self.close),
            "volume": float(self.volume),
        }


class CandleStream:
    """Finite, lazily-produced, non-restartable sequence of candles.

    Iteration pulls one candle at a time from the wrapped source and checks
    that timestamps strictly increase. Once the source is exhausted ``done``
    turns true and further iteration yields nothing; a stream is replayed by
    building a new one from its source.
    """

    def __init__(self, source: Iterable[Candle]):
        self._source: Iterator[Candle] = iter(source)
        self._last: datetime | None = None
        self._emitted = 0
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def emitted(self) -> int:
        return self._emitted

    def __iter__(self) -> CandleStream:
        return self

    def __next__(self) -> Candle:
        if self._done:
            raise StopIteration
        try:
            candle = next(self._source)
        except StopIteration:
            self._done = True
            logger.debug("Candle stream completed after %s candles", self._emitted)
            raise
        if not isinstance(candle, Candle):
            raise CandleDataError(f"Candle stream produced {type(candle).__name__}, expected Candle")
        if self._last is not None and candle.timestamp <= self._last:
            raise CandleDataError(
                f"Non-monotonic candle timestamp {candle.timestamp.isoformat()} "
                f"after {self._last.isoformat()}"
            )
        self._last = candle.timestamp
        self._emitted += 1
        return candle

    def close(self) -> None:
        """Stop consuming the source; the stream reports done afterwards."""
        self._done = True

    @classmethod
    def from_dataframe(cls, frame: pd.DataFrame) -> CandleStream:
        return cls(iter_dataframe_candles(frame))


def _time_column(columns: Iterable[str]) -> str:
    available = set(columns)
    for name in _TIME_COLUMNS:
        if name in available:
            return name
    raise CandleDataError(f"Candle data requires one of the time columns {list(_TIME_COLUMNS)}")


def _validate_frame(frame: pd.DataFrame) -> tuple[str, pd.DataFrame]:
    time_col = _time_column(frame.columns)
    missing = [col for col in _PRICE_COLUMNS if col not in frame.columns and col != "volume"]
    if missing:
        raise CandleDataError(f"Candle data is missing required columns: {missing}")
    data = frame.copy()
    if "volume" not in data.columns:
        data["volume"] = 0.0
    data[time_col] = pd.to_datetime(data[time_col], utc=True, errors="coerce")
    for col in _PRICE_COLUMNS:
        data[col] = pd.to_numeric(data[col], errors="coerce")
    return time_col, data


def iter_dataframe_candles(frame: pd.DataFrame) -> Iterator[Candle]:
    """Yield candles from a DataFrame row by row, in the frame's order."""
    time_col, data = _validate_frame(frame)
    times = data[time_col]
    if times.isna().any():
        raise CandleDataError(f"{time_col} contains invalid timestamps")
    values = data[list(_PRICE_COLUMNS)].to_numpy(dtype=np.float64)
    if np.isnan(values[:, :4]).any():
        raise CandleDataError("Candle prices contain invalid numbers")
    values[:, 4] = np.nan_to_num(values[:, 4], nan=0.0)
    for ts, row in zip(times, values):
        yield Candle(
            timestamp=ts.to_pydatetime(),
            open=float(row[0]),
            high=float(row[1]),
            low=float(row[2]),
            close=float(row[3]),
            volume=float(row[4]),
        )


def check_candle_spacing(frame: pd.DataFrame, timeframe: str, source: Any = "candles") -> int:
    """Count consecutive candles closer together than one *timeframe* bar.

    Gaps longer than a bar (weekends, halts) are normal; bars closer than the
    configured timeframe mean the data was sampled at a finer resolution.
    """
    if len(frame) < 2:
        return 0
    bar = pd.Timedelta(timeframe_duration(timeframe))
    spacing = pd.to_datetime(frame["timestamp"], utc=True).diff().dropna()
    too_close = int((spacing < bar).sum())
    if too_close:
        logger.warning(
            "%s candle pairs in %s are closer than one %s bar (smallest gap %s)",
            too_close,
            source,
            normalize_timeframe(timeframe),
            spacing.min(),
        )
    return too_close


def load_candles_frame(
    path: str | Path,
    start_utc: Any | None = None,
    end_utc: Any | None = None,
    timeframe: str | None = None,
) -> pd.DataFrame:
    """Read an OHLCV CSV, drop unparseable times, sort, dedupe and clip to a window.

    When *timeframe* is given, candle spacing finer than one bar is logged.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Candle file not found: {csv_path}")

    raw = pd.read_csv(csv_path)
    time_col, data = _validate_frame(raw)

    bad_times = int(data[time_col].isna().sum())
    if bad_times:
        logger.warning("Skipping %s rows with invalid timestamps in %s", bad_times, csv_path)
        data = data[data[time_col].notna()]
    if data[["open", "high", "low", "close"]].isna().any().any():
        raise CandleDataError(f"Invalid numeric value in {csv_path}")

    data = data.sort_values(time_col, kind="mergesort")
    duplicated = data[time_col].duplicated(keep="last")
    if duplicated.any():
        logger.warning("Dropping %s duplicate candle timestamps in %s", int(duplicated.sum()), csv_path)
        data = data[~duplicated]

    if start_utc is not None:
        data = data[data[time_col] >= pd.Timestamp(as_utc(start_utc))]
    if end_utc is not None:
        data = data[data[time_col] <= pd.Timestamp(as_utc(end_utc))]

    data = data.rename(columns={time_col: "timestamp"})
    logger.debug("Loaded %s candles from %s", len(data), csv_path)
    data = data[["timestamp", *_PRICE_COLUMNS]].reset_index(drop=True)
    if timeframe is not None:
        check_candle_spacing(data, timeframe, source=csv_path)
    return data


def load_candles_csv(
    path: str | Path,
    start_utc: Any | None = None,
    end_utc: Any | None = None,
    timeframe: str | None = None,
) -> CandleStream:
    """Open a CSV candle file as a candle stream."""
    frame = load_candles_frame(path, start_utc=start_utc, end_utc=end_utc, timeframe=timeframe)
    if frame.empty:
        raise CandleDataError(f"Candle file has no rows in the requested window: {path}")
    return CandleStream.from_dataframe(frame)

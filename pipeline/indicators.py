"""Streaming moving averages and the indicator chart strategies read from.

Indicator computation sits outside the simulation core: the session only
forwards each candle to its observers, and strategies read finished values
back from the chart.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Any, Protocol

import numpy as np
import pandas as pd

from core.market_metadata import normalize_symbol, normalize_timeframe

from .candles import Candle

logger = logging.getLogger(__name__)


class Indicator(Protocol):
    period: int

    def update(self, value: float) -> float | None:
        ...


class SMA:
    """Simple moving average over the last *period* values."""

    kind = "SMA"

    def __init__(self, period: int):
        if int(period) <= 0:
            raise ValueError("period must be positive")
        self.period = int(period)
        self._window: deque[float] = deque(maxlen=self.period)
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        self._window.append(float(value))
        if len(self._window) == self.period:
            self.value = math.fsum(self._window) / self.period
        return self.value


class EMA:
    """Exponential moving average seeded with the SMA of the first *period* values."""

    kind = "EMA"

    def __init__(self, period: int):
        if int(period) <= 0:
            raise ValueError("period must be positive")
        self.period = int(period)
        self._k = 2.0 / (self.period + 1)
        self._seed = SMA(self.period)
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        if self.value is None:
            self.value = self._seed.update(value)
            return self.value
        self.value = float(value) * self._k + self.value * (1.0 - self._k)
        return self.value


class WMA:
    """Linearly weighted moving average; newest value has weight *period*."""

    kind = "WMA"

    def __init__(self, period: int):
        if int(period) <= 0:
            raise ValueError("period must be positive")
        self.period = int(period)
        self._weights = np.arange(1, self.period + 1, dtype=np.float64)
        self._denominator = float(self._weights.sum())
        self._window: deque[float] = deque(maxlen=self.period)
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        self._window.append(float(value))
        if len(self._window) == self.period:
            values = np.fromiter(self._window, dtype=np.float64, count=self.period)
            self.value = float(np.dot(values, self._weights) / self._denominator)
        return self.value


class HMA:
    """Hull moving average: WMA(2*WMA(n/2) - WMA(n), sqrt(n))."""

    kind = "HMA"

    def __init__(self, period: int):
        if int(period) <= 1:
            raise ValueError("HMA period must be greater than 1")
        self.period = int(period)
        self._half = WMA(max(1, self.period // 2))
        self._full = WMA(self.period)
        self._smooth = WMA(max(1, int(math.sqrt(self.period))))
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        half = self._half.update(value)
        full = self._full.update(value)
        if half is None or full is None:
            return None
        self.value = self._smooth.update(2.0 * half - full)
        return self.value


class SMMA:
    """Smoothed (Wilder) moving average seeded with the SMA of the first *period* values."""

    kind = "SMMA"

    def __init__(self, period: int):
        if int(period) <= 0:
            raise ValueError("period must be positive")
        self.period = int(period)
        self._seed = SMA(self.period)
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        if self.value is None:
            self.value = self._seed.update(value)
            return self.value
        self.value = (self.value * (self.period - 1) + float(value)) / self.period
        return self.value


class DEMA:
    """Double exponential moving average: 2*EMA(x) - EMA(EMA(x))."""

    kind = "DEMA"

    def __init__(self, period: int):
        if int(period) <= 0:
            raise ValueError("period must be positive")
        self.period = int(period)
        self._ema = EMA(self.period)
        self._ema_of_ema = EMA(self.period)
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        first = self._ema.update(value)
        if first is None:
            return None
        second = self._ema_of_ema.update(first)
        if second is None:
            return None
        self.value = 2.0 * first - second
        return self.value


class ALMA:
    """Arnaud Legoux moving average: a Gaussian-weighted window.

    The weight peak sits at ``offset * (period - 1)`` from the oldest value,
    with width ``period / sigma``.
    """

    kind = "ALMA"

    def __init__(self, period: int, offset: float = 0.85, sigma: float = 6.0):
        if int(period) <= 0:
            raise ValueError("period must be positive")
        if not 0.0 <= float(offset) <= 1.0:
            raise ValueError("ALMA offset must be within [0, 1]")
        if float(sigma) <= 0:
            raise ValueError("ALMA sigma must be positive")
        self.period = int(period)
        self.offset = float(offset)
        self.sigma = float(sigma)
        m = self.offset * (self.period - 1)
        s = self.period / self.sigma
        positions = np.arange(self.period, dtype=np.float64)
        weights = np.exp(-((positions - m) ** 2) / (2.0 * s * s))
        self._weights = weights / weights.sum()
        self._window: deque[float] = deque(maxlen=self.period)
        self.value: float | None = None

    def update(self, value: float) -> float | None:
        self._window.append(float(value))
        if len(self._window) == self.period:
            values = np.fromiter(self._window, dtype=np.float64, count=self.period)
            self.value = float(np.dot(values, self._weights))
        return self.value


MOVING_AVERAGES: dict[str, type] = {
    "SMA": SMA,
    "EMA": EMA,
    "WMA": WMA,
    "HMA": HMA,
    "SMMA": SMMA,
    "DEMA": DEMA,
    "ALMA": ALMA,
}


def build_moving_average(kind: str, period: int) -> Indicator:
    key = str(kind or "").strip().upper()
    if key not in MOVING_AVERAGES:
        raise ValueError(f"Unsupported moving average: {kind!r}. Available: {sorted(MOVING_AVERAGES)}")
    return MOVING_AVERAGES[key](int(period))


def indicator_field(indicator: Any) -> str:
    """Column name a chart uses for an indicator, e.g. ``sma50``."""
    return f"{indicator.kind.lower()}{indicator.period}"


class IndicatorChart:
    """Candle history plus one column per indicator, updated one candle at a time.

    The chart is a candle observer: the session calls ``on_candle`` before it
    queries the strategy, so predicates always see values that include the
    current candle.
    """

    def __init__(self, symbol: str, timeframe: str, indicators: list[Any] | None = None):
        self.symbol = normalize_symbol(symbol)
        self.timeframe = normalize_timeframe(timeframe)
        self.indicators: dict[str, Any] = {}
        self._candles: list[Candle] = []
        self._columns: dict[str, list[float | None]] = {"close": []}
        for indicator in indicators or []:
            self.add_indicator(indicator)

    def __len__(self) -> int:
        return len(self._candles)

    def add_indicator(self, indicator: Any) -> str:
        """Register an indicator column; only allowed before the first candle."""
        if self._candles:
            raise RuntimeError("Indicators must be added before the chart receives candles")
        name = indicator_field(indicator)
        if name in self.indicators:
            raise ValueError(f"Duplicate indicator column: {name}")
        self.indicators[name] = indicator
        self._columns[name] = []
        logger.debug("Chart %s %s: added indicator column %s", self.symbol, self.timeframe, name)
        return name

    @property
    def fields(self) -> list[str]:
        return list(self.indicators)

    def on_candle(self, candle: Candle) -> None:
        self._candles.append(candle)
        self._columns["close"].append(float(candle.close))
        for name, indicator in self.indicators.items():
            self._columns[name].append(indicator.update(float(candle.close)))

    def series(self, name: str) -> list[float | None]:
        try:
            return self._columns[name]
        except KeyError:
            raise KeyError(f"Unknown chart column {name!r}. Available: {sorted(self._columns)}") from None

    def latest(self, name: str, n: int = 2) -> list[float | None]:
        return self.series(name)[-n:]

    @property
    def candles(self) -> tuple[Candle, ...]:
        return tuple(self._candles)

    def tail(self, n: int) -> tuple[Candle, ...]:
        """Last *n* candles, oldest first."""
        return tuple(self._candles[-n:]) if n > 0 else ()

    def to_dataframe(self) -> pd.DataFrame:
        frame = pd.DataFrame([candle.to_dict() for candle in self._candles], columns=[
            "timestamp",
            "open",
            "high",
            "low",
            "close",
            "volume",
        ])
        for name in self.indicators:
            frame[name] = pd.to_numeric(pd.Series(self._columns[name], dtype=object), errors="coerce")
        return frame

"""Channel breakout template for file-loaded strategies.

Reference it from a run config as
``strategies/00_template_breakout/strategy.py:BreakoutStrategy``.
"""

from __future__ import annotations

from typing import Any


class BreakoutStrategy:
    """Long when the close clears the prior highest high, flat below the prior lowest low."""

    def __init__(self, chart: Any, lookback: int = 20, exit_lookback: int | None = None):
        if int(lookback) <= 0:
            raise ValueError("lookback must be positive")
        self.chart = chart
        self.lookback = int(lookback)
        self.exit_lookback = int(exit_lookback or lookback)
        if self.exit_lookback <= 0:
            raise ValueError("exit_lookback must be positive")

    def _prior(self, count: int):
        candles = self.chart.tail(count + 1)
        if len(candles) <= count:
            return None, None
        return candles[-count - 1:-1], candles[-1]

    def should_open_long(self) -> bool:
        window, current = self._prior(self.lookback)
        if window is None:
            return False
        return float(current.close) > max(float(candle.high) for candle in window)

    def should_close_long(self) -> bool:
        window, current = self._prior(self.exit_lookback)
        if window is None:
            return False
        return float(current.close) < min(float(candle.low) for candle in window)

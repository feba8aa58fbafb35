"""Strategy contract, crossover strategies and the strategy registry."""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .indicators import IndicatorChart, build_moving_average

logger = logging.getLogger(__name__)


@runtime_checkable
class Strategy(Protocol):
    """Once-per-candle open/close decisions over already-updated indicator state.

    Both predicates must be free of simulation side effects: they read the
    indicators they wrap and never touch the order log or the stop machine.
    """

    def should_open_long(self) -> bool:
        ...

    def should_close_long(self) -> bool:
        ...


def supports_short(strategy: Any) -> bool:
    """True when a strategy also implements the optional short predicates."""
    return callable(getattr(strategy, "should_open_short", None)) and callable(
        getattr(strategy, "should_close_short", None)
    )


def crossed_up(a: Sequence[float | None], b: Sequence[float | None]) -> bool:
    """Series *a* moved from at-or-below *b* to above it on the latest value."""
    if len(a) < 2 or len(b) < 2:
        return False
    a_prev, a_now = a[-2], a[-1]
    b_prev, b_now = b[-2], b[-1]
    if None in (a_prev, a_now, b_prev, b_now):
        return False
    return a_prev <= b_prev and a_now > b_now


def crossed_down(a: Sequence[float | None], b: Sequence[float | None]) -> bool:
    """Series *a* moved from at-or-above *b* to below it on the latest value."""
    if len(a) < 2 or len(b) < 2:
        return False
    a_prev, a_now = a[-2], a[-1]
    b_prev, b_now = b[-2], b[-1]
    if None in (a_prev, a_now, b_prev, b_now):
        return False
    return a_prev >= b_prev and a_now < b_now


class CrossStrategy:
    """Long when the fast column crosses above the slow column, flat when it crosses below."""

    def __init__(self, chart: IndicatorChart, fast: str, slow: str):
        self.chart = chart
        self.fast = fast
        self.slow = slow
        # Fail at construction rather than on the first candle.
        chart.series(fast)
        chart.series(slow)

    def should_open_long(self) -> bool:
        return crossed_up(self.chart.latest(self.fast), self.chart.latest(self.slow))

    def should_close_long(self) -> bool:
        return crossed_down(self.chart.latest(self.fast), self.chart.latest(self.slow))


class GoldenCrossStrategy(CrossStrategy):
    """SMA(50) over SMA(200)."""


class HMAStrategy(CrossStrategy):
    """Close price against a Hull moving average."""


class ShortCrossStrategy(CrossStrategy):
    """Short when the fast column crosses below the slow column, cover when it crosses back above."""

    def should_open_short(self) -> bool:
        return crossed_down(self.chart.latest(self.fast), self.chart.latest(self.slow))

    def should_close_short(self) -> bool:
        return crossed_up(self.chart.latest(self.fast), self.chart.latest(self.slow))


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _cross_factory(
    *,
    symbol: str = "UNKNOWN",
    timeframe: str = "1d",
    fast_ma: str = "SMA",
    fast_period: int = 50,
    slow_ma: str = "SMA",
    slow_period: int = 200,
) -> tuple[IndicatorChart, CrossStrategy]:
    fast = build_moving_average(fast_ma, fast_period)
    slow = build_moving_average(slow_ma, slow_period)
    chart = IndicatorChart(symbol, timeframe)
    fast_field = chart.add_indicator(fast)
    slow_field = chart.add_indicator(slow)
    return chart, CrossStrategy(chart, fast=fast_field, slow=slow_field)


def _golden_cross_factory(
    *,
    symbol: str = "UNKNOWN",
    timeframe: str = "1d",
    fast_period: int = 50,
    slow_period: int = 200,
) -> tuple[IndicatorChart, GoldenCrossStrategy]:
    chart = IndicatorChart(symbol, timeframe)
    fast_field = chart.add_indicator(build_moving_average("SMA", fast_period))
    slow_field = chart.add_indicator(build_moving_average("SMA", slow_period))
    return chart, GoldenCrossStrategy(chart, fast=fast_field, slow=slow_field)


def _hma_factory(
    *,
    symbol: str = "UNKNOWN",
    timeframe: str = "1d",
    period: int = 55,
) -> tuple[IndicatorChart, HMAStrategy]:
    chart = IndicatorChart(symbol, timeframe)
    hma_field = chart.add_indicator(build_moving_average("HMA", period))
    return chart, HMAStrategy(chart, fast="close", slow=hma_field)


def _short_cross_factory(**options: Any) -> tuple[IndicatorChart, ShortCrossStrategy]:
    chart, strategy = _cross_factory(**options)
    return chart, ShortCrossStrategy(chart, fast=strategy.fast, slow=strategy.slow)


STRATEGY_REGISTRY: dict[str, Callable[..., tuple[IndicatorChart, Any]]] = {
    "cross": _cross_factory,
    "golden_cross": _golden_cross_factory,
    "hma": _hma_factory,
    "short_cross": _short_cross_factory,
}


def list_strategies() -> list[str]:
    return sorted(STRATEGY_REGISTRY)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _sanitize_module_name(path: Path) -> str:
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()
    return f"_pipeline_strategy_{digest}"


def load_strategy_class(reference: str, base_dir: Path | None = None) -> type:
    """Resolve ``path/to/file.py:ClassName`` or ``package.module:ClassName``."""
    raw_ref = str(reference or "").strip()
    if not raw_ref:
        raise ValueError("strategy reference is required")

    if ":" in raw_ref:
        target, class_name = raw_ref.rsplit(":", 1)
    elif "." in raw_ref:
        target, class_name = raw_ref.rsplit(".", 1)
    else:
        raise ValueError(f"Invalid strategy reference: {reference}")

    target = target.strip()
    class_name = class_name.strip()
    if not target or not class_name:
        raise ValueError(f"Invalid strategy reference: {reference}")

    is_file_ref = target.endswith(".py") or "\\" in target or "/" in target
    if is_file_ref:
        file_path = Path(target)
        if not file_path.is_absolute():
            file_path = ((base_dir or Path.cwd()) / file_path).resolve()
        if not file_path.exists():
            raise FileNotFoundError(f"Strategy module file not found: {file_path}")
        module_name = _sanitize_module_name(file_path)
        module_spec = importlib.util.spec_from_file_location(module_name, file_path)
        if module_spec is None or module_spec.loader is None:
            raise ImportError(f"Unable to import strategy module from {file_path}")
        module = importlib.util.module_from_spec(module_spec)
        module_spec.loader.exec_module(module)
    else:
        module = importlib.import_module(target)

    try:
        return getattr(module, class_name)
    except AttributeError as exc:
        raise ImportError(f"Strategy class {class_name} not found in {target}") from exc


def _is_reference(name: str) -> bool:
    return ":" in name or name.endswith(".py") or "/" in name or "\\" in name


def load_strategy(
    name: str,
    *,
    base_dir: Path | None = None,
    symbol: str = "UNKNOWN",
    timeframe: str = "1d",
    **params: Any,
) -> tuple[IndicatorChart, Any]:
    """Build ``(chart, strategy)`` for a registered name or a class reference.

    Referenced classes are constructed as ``cls(chart, **params)`` and may
    register their own indicators on the chart in ``__init__``.
    """
    key = str(name or "").strip()
    if key in STRATEGY_REGISTRY:
        chart, strategy = STRATEGY_REGISTRY[key](symbol=symbol, timeframe=timeframe, **params)
    elif _is_reference(key):
        strategy_cls = load_strategy_class(key, base_dir=base_dir)
        chart = IndicatorChart(symbol, timeframe)
        strategy = strategy_cls(chart, **params)
    else:
        raise KeyError(f"Unknown strategy: {name!r}. Available: {list_strategies()}")

    if not isinstance(strategy, Strategy):
        raise TypeError(f"Strategy {name!r} must implement should_open_long() and should_close_long()")
    logger.debug("Loaded strategy %s with chart columns %s", key, chart.fields)
    return chart, strategy

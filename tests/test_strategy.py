from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pipeline.candles import Candle
from pipeline.strategy import (
    CrossStrategy,
    GoldenCrossStrategy,
    HMAStrategy,
    ShortCrossStrategy,
    Strategy,
    crossed_down,
    crossed_up,
    list_strategies,
    load_strategy,
    load_strategy_class,
    supports_short,
)

REPO_ROOT = Path(__file__).resolve().parents[1]
_T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _candle(day: int, close: float, *, high: float | None = None, low: float | None = None) -> Candle:
    return Candle(
        timestamp=_T0 + timedelta(days=day),
        open=close,
        high=close if high is None else high,
        low=close if low is None else low,
        close=close,
    )


def _feed(chart, closes):
    for day, close in enumerate(closes):
        chart.on_candle(_candle(day, close))


class TestCrossHelpers:
    def test_crossed_up(self) -> None:
        assert crossed_up([1.0, 3.0], [2.0, 2.0])
        assert crossed_up([2.0, 3.0], [2.0, 2.0])
        assert not crossed_up([3.0, 4.0], [2.0, 2.0])
        assert not crossed_up([1.0, 2.0], [2.0, 2.0])

    def test_crossed_down(self) -> None:
        assert crossed_down([3.0, 1.0], [2.0, 2.0])
        assert not crossed_down([1.0, 0.5], [2.0, 2.0])

    def test_missing_values_never_cross(self) -> None:
        assert not crossed_up([None, 3.0], [2.0, 2.0])
        assert not crossed_down([3.0, 1.0], [2.0, None])
        assert not crossed_up([3.0], [2.0])


class TestRegisteredStrategies:
    def test_registry_names(self) -> None:
        assert list_strategies() == ["cross", "golden_cross", "hma", "short_cross"]

    def test_cross_opens_and_closes(self) -> None:
        chart, strategy = load_strategy("cross", fast_period=1, slow_period=3)
        assert isinstance(strategy, CrossStrategy)
        assert chart.fields == ["sma1", "sma3"]

        _feed(chart, [10.0, 10.0, 10.0, 10.0])
        assert not strategy.should_open_long()
        chart.on_candle(_candle(4, 13.0))
        assert strategy.should_open_long()
        assert not strategy.should_close_long()
        chart.on_candle(_candle(5, 13.0))
        assert not strategy.should_open_long()
        chart.on_candle(_candle(6, 5.0))
        assert strategy.should_close_long()

    def test_golden_cross_defaults(self) -> None:
        chart, strategy = load_strategy("golden_cross", symbol="eth", timeframe="1d")
        assert isinstance(strategy, GoldenCrossStrategy)
        assert chart.fields == ["sma50", "sma200"]
        assert chart.symbol == "ETHUSD"

    def test_hma_compares_close_with_hull(self) -> None:
        chart, strategy = load_strategy("hma", period=4)
        assert isinstance(strategy, HMAStrategy)
        assert (strategy.fast, strategy.slow) == ("close", "hma4")

    def test_short_cross_mirrors_the_rules(self) -> None:
        chart, strategy = load_strategy("short_cross", fast_period=1, slow_period=3)
        assert isinstance(strategy, ShortCrossStrategy)
        assert supports_short(strategy)
        _feed(chart, [10.0, 10.0, 10.0, 10.0, 7.0])
        assert strategy.should_open_short()
        assert not strategy.should_close_short()

    def test_plain_cross_has_no_short_side(self) -> None:
        _, strategy = load_strategy("cross", fast_period=1, slow_period=3)
        assert not supports_short(strategy)

    def test_unknown_name(self) -> None:
        with pytest.raises(KeyError):
            load_strategy("moonshot")

    def test_unknown_chart_column_fails_at_construction(self) -> None:
        chart, _ = load_strategy("cross", fast_period=1, slow_period=3)
        with pytest.raises(KeyError):
            CrossStrategy(chart, fast="sma1", slow="ema9")


class TestReferencedStrategies:
    def test_breakout_template_from_file(self) -> None:
        chart, strategy = load_strategy(
            "strategies/00_template_breakout/strategy.py:BreakoutStrategy",
            base_dir=REPO_ROOT,
            lookback=3,
        )
        assert isinstance(strategy, Strategy)
        for day, close in enumerate([10.0, 11.0, 10.5]):
            chart.on_candle(_candle(day, close, high=close + 0.5, low=close - 0.5))
        assert not strategy.should_open_long()
        chart.on_candle(_candle(3, 12.0, high=12.5, low=11.5))
        assert strategy.should_open_long()
        chart.on_candle(_candle(4, 9.0, high=9.5, low=8.5))
        assert strategy.should_close_long()

    def test_module_reference(self) -> None:
        cls = load_strategy_class("pipeline.strategy:CrossStrategy")
        assert cls is CrossStrategy

    def test_class_without_predicates_is_rejected(self, tmp_path) -> None:
        (tmp_path / "bad.py").write_text(
            "class NotAStrategy:\n    def __init__(self, chart):\n        self.chart = chart\n",
            encoding="utf-8",
        )
        with pytest.raises(TypeError):
            load_strategy("bad.py:NotAStrategy", base_dir=tmp_path)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_strategy("missing.py:Thing", base_dir=tmp_path)

    def test_missing_class(self, tmp_path) -> None:
        (tmp_path / "empty.py").write_text("VALUE = 1\n", encoding="utf-8")
        with pytest.raises(ImportError):
            load_strategy_class("empty.py:Thing", base_dir=tmp_path)

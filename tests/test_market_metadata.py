from datetime import timedelta

import pytest

from core.market_metadata import normalize_symbol, normalize_timeframe, resolve_symbol_alias, timeframe_duration


@pytest.mark.parametrize(
    "raw,expected",
    [("btc/usd", "BTCUSD"), ("eth-usd", "ETHUSD"), ("eth", "ETHUSD"), ("spy", "SPY"), ("brk.b", "BRK.B")],
)
def test_normalize_symbol(raw: str, expected: str) -> None:
    assert normalize_symbol(raw) == expected


def test_normalize_symbol_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        normalize_symbol("  ")
    with pytest.raises(ValueError):
        normalize_symbol("$$$")


def test_aliases_can_be_disabled() -> None:
    assert normalize_symbol("btc", allow_aliases=False) == "BTC"
    assert resolve_symbol_alias("bitcoin") == "BTCUSD"


@pytest.mark.parametrize("raw,expected", [("1h", "H1"), ("D", "D"), ("daily", "D"), ("4H", "H4"), ("w", "W")])
def test_normalize_timeframe(raw: str, expected: str) -> None:
    assert normalize_timeframe(raw) == expected


def test_unsupported_timeframe() -> None:
    with pytest.raises(ValueError, match="Unsupported timeframe"):
        normalize_timeframe("7m")


def test_timeframe_duration() -> None:
    assert timeframe_duration("4h") == timedelta(hours=4)
    assert timeframe_duration("1w") == timedelta(weeks=1)

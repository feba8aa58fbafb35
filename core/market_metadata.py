"""Shared symbol and timeframe normalization helpers."""

from __future__ import annotations

import re
from datetime import timedelta

# User-facing aliases for common symbols.
SYMBOL_ALIASES: dict[str, str] = {
    "BITCOIN": "BTCUSD",
    "BTC": "BTCUSD",
    "ETHER": "ETHUSD",
    "ETH": "ETHUSD",
}

# Canonical timeframe aliases used by configs and charts.
TIMEFRAME_ALIASES: dict[str, str] = {
    "1m": "M1",
    "m1": "M1",
    "5m": "M5",
    "m5": "M5",
    "15m": "M15",
    "m15": "M15",
    "30m": "M30",
    "m30": "M30",
    "1h": "H1",
    "h1": "H1",
    "4h": "H4",
    "h4": "H4",
    "1d": "D",
    "d": "D",
    "d1": "D",
    "daily": "D",
    "2d": "D2",
    "d2": "D2",
    "3d": "D3",
    "d3": "D3",
    "1w": "W",
    "w": "W",
    "w1": "W",
    "weekly": "W",
}

_TIMEFRAME_DURATIONS: dict[str, timedelta] = {
    "M1": timedelta(minutes=1),
    "M5": timedelta(minutes=5),
    "M15": timedelta(minutes=15),
    "M30": timedelta(minutes=30),
    "H1": timedelta(hours=1),
    "H4": timedelta(hours=4),
    "D": timedelta(days=1),
    "D2": timedelta(days=2),
    "D3": timedelta(days=3),
    "W": timedelta(weeks=1),
}

SUPPORTED_TIMEFRAMES = set(_TIMEFRAME_DURATIONS)

_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9_.]{0,31}$")


def resolve_symbol_alias(raw: str) -> str:
    """Resolve user alias to a canonical symbol if available."""
    key = raw.strip().upper()
    return SYMBOL_ALIASES.get(key, key)


def normalize_symbol(raw: str, *, allow_aliases: bool = True) -> str:
    """
    Normalize user input to the canonical symbol format.

    Examples:
    - btc/usd -> BTCUSD
    - btc-usd -> BTCUSD
    - eth -> ETHUSD
    """
    if not raw or not raw.strip():
        raise ValueError("Symbol is required.")

    normalized = raw.strip().upper().replace("/", "").replace("-", "")
    normalized = normalized.replace(" ", "")

    if allow_aliases:
        normalized = resolve_symbol_alias(normalized)

    if not _SYMBOL_RE.match(normalized):
        raise ValueError(f"Invalid symbol format: {raw}")

    return normalized


def normalize_timeframe(raw: str) -> str:
    """Normalize timeframe aliases to canonical form (M1/M5/.../H4/D/D2/D3/W)."""
    if not raw or not raw.strip():
        raise ValueError("Timeframe is required.")

    key = raw.strip().lower()
    if key in TIMEFRAME_ALIASES:
        return TIMEFRAME_ALIASES[key]

    normalized = raw.strip().upper()
    if normalized in SUPPORTED_TIMEFRAMES:
        return normalized

    raise ValueError(
        f"Unsupported timeframe: {raw}. "
        "Supported aliases: 1m, 5m, 15m, 30m, 1h, 4h, 1d, 2d, 3d, 1w."
    )


def timeframe_duration(timeframe: str) -> timedelta:
    """Return the bar duration for a timeframe alias or canonical name."""
    return _TIMEFRAME_DURATIONS[normalize_timeframe(timeframe)]

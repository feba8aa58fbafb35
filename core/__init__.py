"""Core utilities shared by the pipeline and its CLI."""

from .logging_setup import setup_logging, teardown_logging
from .market_metadata import (
    SUPPORTED_TIMEFRAMES,
    SYMBOL_ALIASES,
    TIMEFRAME_ALIASES,
    normalize_symbol,
    normalize_timeframe,
    resolve_symbol_alias,
    timeframe_duration,
)

__all__ = [
    "setup_logging",
    "teardown_logging",
    "SYMBOL_ALIASES",
    "TIMEFRAME_ALIASES",
    "SUPPORTED_TIMEFRAMES",
    "resolve_symbol_alias",
    "normalize_symbol",
    "normalize_timeframe",
    "timeframe_duration",
]

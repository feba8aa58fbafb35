"""Candle-driven single-asset strategy simulation and trade reporting."""

from .candles import Candle, CandleDataError, CandleStream, load_candles_csv, load_candles_frame
from .indicators import ALMA, DEMA, EMA, HMA, SMA, SMMA, WMA, IndicatorChart, build_moving_average
from .models import RunConfig, SessionConfig, StopConfig, StrategyConfig, iso_utc
from .report import (
    REPORT_COLUMNS,
    Trade,
    reconstruct_trades,
    report,
    report_from_log,
    summarize,
    trade_markers,
    write_report_artifacts,
)
from .runtime import PipelineArtifacts, SimulationResult, run_pipeline, simulate
from .session import Fill, OrderLog, SequencingError, Side, SimulatorSession
from .stops import (
    BreakevenStop,
    FixedStop,
    ProtocolViolation,
    StopEvent,
    StopLossStateMachine,
    StopState,
    TrailingStop,
    build_stop_policy,
    next_state,
)
from .strategy import (
    STRATEGY_REGISTRY,
    CrossStrategy,
    GoldenCrossStrategy,
    HMAStrategy,
    ShortCrossStrategy,
    Strategy,
    crossed_down,
    crossed_up,
    list_strategies,
    load_strategy,
)

__all__ = [
    "Candle",
    "CandleDataError",
    "CandleStream",
    "load_candles_csv",
    "load_candles_frame",
    "SMA",
    "EMA",
    "WMA",
    "HMA",
    "SMMA",
    "DEMA",
    "ALMA",
    "IndicatorChart",
    "build_moving_average",
    "RunConfig",
    "SessionConfig",
    "StopConfig",
    "StrategyConfig",
    "iso_utc",
    "REPORT_COLUMNS",
    "Trade",
    "reconstruct_trades",
    "report",
    "report_from_log",
    "summarize",
    "trade_markers",
    "write_report_artifacts",
    "PipelineArtifacts",
    "SimulationResult",
    "run_pipeline",
    "simulate",
    "Fill",
    "OrderLog",
    "SequencingError",
    "Side",
    "SimulatorSession",
    "BreakevenStop",
    "FixedStop",
    "ProtocolViolation",
    "StopEvent",
    "StopLossStateMachine",
    "StopState",
    "TrailingStop",
    "build_stop_policy",
    "next_state",
    "STRATEGY_REGISTRY",
    "CrossStrategy",
    "GoldenCrossStrategy",
    "HMAStrategy",
    "ShortCrossStrategy",
    "Strategy",
    "crossed_down",
    "crossed_up",
    "list_strategies",
    "load_strategy",
]

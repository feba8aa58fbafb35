"""Wires candles, chart, strategy, session and reporter into one run."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from .candles import Candle, CandleStream, load_candles_csv
from .indicators import IndicatorChart
from .models import RunConfig
from .report import _json_default, report, summarize, trade_markers, write_report_artifacts
from .session import ReferencePrice, SimulatorSession
from .stops import StopPolicy
from .strategy import load_strategy

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    session: SimulatorSession
    chart: IndicatorChart
    strategy: Any

    @property
    def trades(self) -> pd.DataFrame:
        return report(self.session)

    @property
    def fills(self) -> pd.DataFrame:
        return self.session.order_log.to_dataframe()

    def summary(self) -> dict[str, Any]:
        return summarize(self.trades)

    def markers(self) -> list[dict[str, Any]]:
        return trade_markers(self.trades, [candle.timestamp for candle in self.chart.candles])


@dataclass(frozen=True)
class PipelineArtifacts:
    trades: pd.DataFrame
    fills: pd.DataFrame
    summary: dict[str, Any]
    paths: dict[str, str]


def simulate(
    candles: Iterable[Candle],
    strategy_name: str,
    *,
    stop_policy: StopPolicy | None = None,
    amount: float = 1.0,
    reference_price: str | ReferencePrice = "close",
    direction: str = "long",
    symbol: str = "UNKNOWN",
    timeframe: str = "1d",
    base_dir: Path | None = None,
    **strategy_options: Any,
) -> SimulationResult:
    """Run one strategy over a candle sequence and return the finished session."""
    chart, strategy = load_strategy(
        strategy_name,
        base_dir=base_dir,
        symbol=symbol,
        timeframe=timeframe,
        **strategy_options,
    )
    session = SimulatorSession(
        strategy,
        stop_policy=stop_policy,
        amount=amount,
        reference_price=reference_price,
        direction=direction,
        observers=[chart.on_candle],
    )
    stream = candles if isinstance(candles, CandleStream) else CandleStream(candles)
    session.run(stream)
    return SimulationResult(session=session, chart=chart, strategy=strategy)


def run_pipeline(config: RunConfig) -> PipelineArtifacts:
    """Load candles, simulate, and write report artifacts to disk."""
    logger.info(
        "Starting run: strategy=%s symbol=%s timeframe=%s candles=%s",
        config.strategy.name,
        config.symbol,
        config.timeframe,
        config.candles_csv,
    )
    stream = load_candles_csv(
        config.candles_csv,
        start_utc=config.start_utc,
        end_utc=config.end_utc,
        timeframe=config.timeframe,
    )
    result = simulate(
        stream,
        config.strategy.name,
        stop_policy=config.stop.build(),
        amount=config.session.amount,
        reference_price=config.session.price_field,
        direction=config.session.direction,
        symbol=config.symbol,
        timeframe=config.timeframe,
        base_dir=config.config_dir,
        **config.strategy.params,
    )

    trades_df = result.trades
    fills_df = result.fills
    run_info = {
        "symbol": config.symbol,
        "timeframe": config.timeframe,
        "strategy": config.strategy.name,
        "candles": result.session.candles_seen,
        "first_candle_utc": result.chart.candles[0].timestamp if len(result.chart) else None,
        "last_candle_utc": result.session.timestamp,
        "final_stop_state": result.session.stop_machine.state,
    }
    written = write_report_artifacts(trades_df, config.report_dir, fills_df=fills_df, run_info=run_info)

    run_config_path = Path(config.report_dir) / "run_config.json"
    run_config_path.write_text(
        json.dumps(config.to_dict(), indent=2, default=_json_default),
        encoding="utf-8",
    )
    paths = dict(written["paths"])
    paths["run_config_json"] = str(run_config_path)

    stats = written["summary"]["trade_summary"]
    logger.info(
        "Run finished: trades=%s total_pnl=%.6g wins=%.6g losses=%.6g report_dir=%s",
        stats["total_trades"],
        stats["total"],
        stats["wins"],
        stats["losses"],
        config.report_dir,
    )
    return PipelineArtifacts(trades=trades_df, fills=fills_df, summary=written["summary"], paths=paths)

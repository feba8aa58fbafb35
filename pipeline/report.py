"""Trade reconstruction, PnL summaries and report artifacts."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import numpy as np
import pandas as pd

from .models import iso_utc
from .session import Fill, OrderLog, Side, SimulatorSession

logger = logging.getLogger(__name__)

TRADE_COLUMNS: list[str] = [
    "action",
    "open_ts",
    "open_price",
    "close_ts",
    "close_price",
    "amount",
    "pnl",
]

REPORT_COLUMNS: list[str] = [*TRADE_COLUMNS, "still_open"]


@dataclass(frozen=True)
class Trade:
    """A paired open and close fill."""

    action: str
    open_ts: datetime
    open_price: float
    close_ts: datetime
    close_price: float
    amount: float
    pnl: float
    still_open: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "open_ts": self.open_ts,
            "open_price": float(self.open_price),
            "close_ts": self.close_ts,
            "close_price": float(self.close_price),
            "amount": float(self.amount),
            "pnl": float(self.pnl),
            "still_open": bool(self.still_open),
        }


def _json_default(value: Any) -> Any:
    if isinstance(value, pd.Timestamp):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, datetime):
        return iso_utc(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (set, tuple)):
        return list(value)
    return str(value)


def make_trade(open_fill: Fill, close_fill: Fill, *, still_open: bool = False) -> Trade:
    """Price one round trip; long when it opened with a buy, short when with a sell."""
    if open_fill.side == close_fill.side:
        raise ValueError(f"Cannot pair two {open_fill.side.value} fills into a trade")
    amount = float(close_fill.amount)
    if open_fill.side is Side.BUY:
        action = "long"
        pnl = (float(close_fill.price) - float(open_fill.price)) * amount
    else:
        action = "short"
        pnl = (float(open_fill.price) - float(close_fill.price)) * amount
    return Trade(
        action=action,
        open_ts=open_fill.timestamp,
        open_price=float(open_fill.price),
        close_ts=close_fill.timestamp,
        close_price=float(close_fill.price),
        amount=amount,
        pnl=pnl,
        still_open=still_open,
    )


def reconstruct_trades(
    fills: Iterable[Fill],
    last_price: float | None = None,
    last_timestamp: datetime | None = None,
) -> list[Trade]:
    """Pair fill 2k with fill 2k+1.

    A dangling opening fill is marked to *last_price* at *last_timestamp*
    (falling back to the open fill's own time) and flagged ``still_open``.
    """
    ordered = list(fills)
    trades: list[Trade] = []
    for index in range(0, len(ordered) - 1, 2):
        trades.append(make_trade(ordered[index], ordered[index + 1]))

    if len(ordered) % 2 == 1:
        open_fill = ordered[-1]
        if last_price is None:
            raise ValueError("last_price is required to mark a position that is still open")
        mark = Fill(
            timestamp=last_timestamp or open_fill.timestamp,
            price=float(last_price),
            amount=open_fill.amount,
            side=open_fill.side.opposite,
            reason="mark",
        )
        trades.append(make_trade(open_fill, mark, still_open=True))
    return trades


def trades_to_frame(trades: Sequence[Trade]) -> pd.DataFrame:
    return pd.DataFrame([trade.to_dict() for trade in trades], columns=REPORT_COLUMNS)


def report(session: SimulatorSession) -> pd.DataFrame:
    """Return the trades that happened during a simulator session."""
    trades = reconstruct_trades(session.order_log, last_price=session.price, last_timestamp=session.timestamp)
    return trades_to_frame(trades)


def report_from_log(
    order_log: OrderLog,
    last_price: float | None = None,
    last_timestamp: datetime | None = None,
) -> pd.DataFrame:
    """Build a trade report from a bare order log, without a session."""
    return trades_to_frame(reconstruct_trades(order_log, last_price=last_price, last_timestamp=last_timestamp))


def _profit_factor(series: pd.Series) -> Optional[float]:
    if series.empty:
        return None
    wins = float(series[series > 0].sum())
    losses = float(series[series < 0].sum())
    if losses == 0:
        return None if wins == 0 else float("inf")
    return float(wins / abs(losses))


def _max_drawdown(series: pd.Series) -> float:
    if series.empty:
        return 0.0
    equity = series.fillna(0.0).astype(float).cumsum()
    # Drawdown is measured from a flat starting equity of zero.
    peak = np.maximum(equity.cummax(), 0.0)
    return float((equity - peak).min())


def summarize(trades_df: pd.DataFrame) -> dict[str, Any]:
    """Aggregate PnL statistics over a trade report."""
    pnl = trades_df["pnl"].astype(float) if not trades_df.empty else pd.Series(dtype=float)
    still_open = trades_df["still_open"].astype(bool) if not trades_df.empty else pd.Series(dtype=bool)
    total_trades = int(len(trades_df))
    winners = int((pnl > 0).sum())
    losers = int((pnl < 0).sum())
    return {
        "total_trades": total_trades,
        "closed_trades": int((~still_open).sum()),
        "open_trades": int(still_open.sum()),
        "long_trades": int((trades_df["action"] == "long").sum()) if total_trades else 0,
        "short_trades": int((trades_df["action"] == "short").sum()) if total_trades else 0,
        "winning_trades": winners,
        "losing_trades": losers,
        "win_rate": (winners / total_trades) if total_trades else None,
        "wins": float(pnl[pnl >= 0].sum()),
        "losses": float(pnl[pnl < 0].sum()),
        "total": float(pnl.sum()),
        "avg_pnl": float(pnl.mean()) if total_trades else None,
        "best_trade": float(pnl.max()) if total_trades else None,
        "worst_trade": float(pnl.min()) if total_trades else None,
        "profit_factor": _profit_factor(pnl),
        "max_drawdown": _max_drawdown(pnl),
    }


def _utc_timestamp(value: Any) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def trade_markers(trades_df: pd.DataFrame, candle_timestamps: Sequence[Any]) -> list[dict[str, Any]]:
    """Map trades onto candle indices for a chart overlay.

    Each marker spans from the first candle at or after ``open_ts`` to the
    candle before the first one at or after ``close_ts``; trades that are
    still open, or close past the last candle, end on the last candle.
    """
    if trades_df.empty or len(candle_timestamps) == 0:
        return []

    times = pd.DatetimeIndex(pd.to_datetime(list(candle_timestamps), utc=True))
    last_index = len(times) - 1

    def index_of(ts: Any) -> int | None:
        idx = int(times.searchsorted(_utc_timestamp(ts), side="left"))
        return idx if idx <= last_index else None

    markers: list[dict[str, Any]] = []
    for row in trades_df.itertuples(index=False):
        start = index_of(row.open_ts)
        if start is None:
            continue
        close_index = None if row.still_open else index_of(row.close_ts)
        end = last_index if close_index is None else max(start, close_index - 1)
        markers.append(
            {
                "action": row.action,
                "start_index": start,
                "start_price": float(row.open_price),
                "end_index": end,
                "end_price": float(row.close_price),
                "still_open": bool(row.still_open),
                "color": "#7CB518" if row.pnl >= 0 else "#D1495B",
            }
        )
    return markers


def _md_table(rows: list[dict[str, Any]], columns: list[str]) -> str:
    if not rows:
        return "_No rows_\n"
    header = "| " + " | ".join(columns) + " |"
    sep = "| " + " | ".join(["---"] * len(columns)) + " |"
    body: list[str] = []
    for row in rows:
        values: list[str] = []
        for col in columns:
            value = row.get(col)
            if isinstance(value, float):
                values.append(f"{value:.6g}")
            elif value is None:
                values.append("")
            else:
                values.append(str(value))
        body.append("| " + " | ".join(values) + " |")
    return "\n".join([header, sep, *body]) + "\n"


def render_markdown_report(summary: dict[str, Any], trades_df: pd.DataFrame, title: str = "Pipeline Report") -> str:
    sections: list[str] = [f"# {title}", ""]
    run = summary.get("run", {})
    if run:
        sections.append(f"- Symbol: `{run.get('symbol')}`")
        sections.append(f"- Timeframe: `{run.get('timeframe')}`")
        sections.append(f"- Strategy: `{run.get('strategy')}`")
        sections.append(f"- Candles: `{run.get('candles')}`")
        sections.append("")

    stats = summary.get("trade_summary", {})
    sections.append("## Summary Metrics")
    sections.append("")
    sections.append(_md_table([
        {"metric": "Total trades", "value": stats.get("total_trades")},
        {"metric": "Open trades", "value": stats.get("open_trades")},
        {"metric": "Win rate", "value": stats.get("win_rate")},
        {"metric": "Wins", "value": stats.get("wins")},
        {"metric": "Losses", "value": stats.get("losses")},
        {"metric": "Total PnL", "value": stats.get("total")},
        {"metric": "Profit factor", "value": stats.get("profit_factor")},
        {"metric": "Max drawdown", "value": stats.get("max_drawdown")},
    ], ["metric", "value"]).rstrip())
    sections.append("")

    sections.append("## Trades")
    sections.append("")
    rows = []
    for record in trades_df.to_dict(orient="records"):
        record["open_ts"] = iso_utc(record.get("open_ts"))
        record["close_ts"] = iso_utc(record.get("close_ts"))
        rows.append(record)
    sections.append(_md_table(rows, REPORT_COLUMNS).rstrip())
    sections.append("")
    return "\n".join(sections)


def write_report_artifacts(
    trades_df: pd.DataFrame,
    report_dir: str | Path,
    *,
    fills_df: pd.DataFrame | None = None,
    run_info: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Write trades, fills, summary and markdown report artifacts."""
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    summary = {
        "run": run_info or {},
        "trade_summary": summarize(trades_df),
    }

    trades_out = trades_df.copy()
    for col in ("open_ts", "close_ts"):
        trades_out[col] = pd.to_datetime(trades_out[col], utc=True).dt.strftime("%Y-%m-%dT%H:%M:%SZ")

    trades_path = out_dir / "trades.csv"
    fills_path = out_dir / "fills.csv"
    summary_path = out_dir / "summary.json"
    report_path = out_dir / "report.md"

    trades_out.to_csv(trades_path, index=False)
    if fills_df is not None:
        fills_out = fills_df.copy()
        fills_out["timestamp"] = pd.to_datetime(fills_out["timestamp"], utc=True).dt.strftime("%Y-%m-%dT%H:%M:%SZ")
        fills_out.to_csv(fills_path, index=False)
    summary_path.write_text(json.dumps(summary, indent=2, default=_json_default), encoding="utf-8")
    report_path.write_text(render_markdown_report(summary, trades_df), encoding="utf-8")
    logger.info("Wrote report artifacts to %s", out_dir)

    paths = {
        "report_dir": str(out_dir),
        "trades_csv": str(trades_path),
        "summary_json": str(summary_path),
        "report_md": str(report_path),
    }
    if fills_df is not None:
        paths["fills_csv"] = str(fills_path)
    return {"summary": summary, "paths": paths}

"""CLI for candle-driven strategy simulation runs."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

_HERE = Path(__file__).parent
if str(_HERE) not in sys.path:
    sys.path.insert(0, str(_HERE))

from core.logging_setup import setup_logging  # noqa: E402
from pipeline import RunConfig, list_strategies, run_pipeline  # noqa: E402


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Single-asset strategy simulation CLI")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Simulate a strategy over a candle CSV from a JSON config")
    run_parser.add_argument("--config", required=True, help="Path to the run JSON config")

    subparsers.add_parser("strategies", help="List registered strategy names")

    return parser.parse_args(argv)


def _run_simulation(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("config does not exist: %s", config_path)
        return 2

    try:
        config = RunConfig.from_path(config_path)
        artifacts = run_pipeline(config)
    except Exception as exc:  # surface actionable runtime/config errors
        logger.error("%s: %s", type(exc).__name__, exc)
        return 3

    stats = artifacts.summary.get("trade_summary", {})
    logger.info("Report dir: %s", artifacts.paths["report_dir"])
    logger.info("Total trades: %s", stats.get("total_trades"))
    logger.info("Open trades: %s", stats.get("open_trades"))
    logger.info("Total PnL: %s", stats.get("total"))
    return 0


def _list_strategies(args: argparse.Namespace) -> int:
    for name in list_strategies():
        print(name)
    return 0


def _run(args: argparse.Namespace) -> int:
    if args.command == "run":
        return _run_simulation(args)
    if args.command == "strategies":
        return _list_strategies(args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(log_level=args.log_level)
    raise SystemExit(_run(args))


if __name__ == "__main__":
    main()

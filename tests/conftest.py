import json
import logging

import pytest

from core.logging_setup import teardown_logging

CLOSES = [10.0, 10.0, 10.0, 10.0, 13.0, 14.0, 15.0, 9.0, 8.0, 8.0]


@pytest.fixture
def candles_csv(tmp_path):
    path = tmp_path / "data" / "btc_d.csv"
    path.parent.mkdir(parents=True)
    rows = ["time,open,high,low,close,volume"]
    for day, close in enumerate(CLOSES, start=1):
        rows.append(f"2024-01-{day:02d}T00:00:00Z,{close},{close},{close},{close},100")
    path.write_text("\n".join(rows) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def run_config_path(tmp_path, candles_csv):
    payload = {
        "candles_csv": "data/btc_d.csv",
        "report_dir": "reports/run",
        "symbol": "BTCUSD",
        "timeframe": "1d",
        "strategy": {"name": "cross", "params": {"fast_period": 1, "slow_period": 3}},
        "session": {"amount": 1},
        "stop": {"policy": "fixed", "distance_pct": 0.5},
    }
    path = tmp_path / "run.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture
def restore_logging():
    yield
    teardown_logging(logging.getLogger())

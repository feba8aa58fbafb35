import json
from pathlib import Path
from datetime import datetime, timezone

import pytest

from pipeline.models import RunConfig, SessionConfig, StopConfig, StrategyConfig, iso_utc
from pipeline.stops import BreakevenStop, FixedStop


def _payload(**overrides):
    payload = {
        "candles_csv": "data/btc.csv",
        "report_dir": "reports/run",
        "symbol": "btc",
        "timeframe": "1d",
        "strategy": {"name": "golden_cross", "params": {"fast_period": 10}},
    }
    payload.update(overrides)
    return payload


class TestRunConfig:
    def test_defaults_and_normalization(self) -> None:
        config = RunConfig.from_dict(_payload())
        assert config.symbol == "BTCUSD"
        assert config.timeframe == "D"
        assert config.strategy == StrategyConfig(name="golden_cross", params={"fast_period": 10})
        assert config.session == SessionConfig()
        assert config.stop.policy == "fixed"
        assert isinstance(config.stop.build(), FixedStop)
        assert config.start_utc is None

    def test_from_path_resolves_relative_paths(self, tmp_path) -> None:
        config_path = tmp_path / "run.json"
        config_path.write_text(json.dumps(_payload()), encoding="utf-8")
        config = RunConfig.from_path(config_path)
        assert config.candles_csv == (tmp_path / "data" / "btc.csv").resolve()
        assert config.report_dir == (tmp_path / "reports" / "run").resolve()
        assert config.config_dir == tmp_path

    def test_window_is_parsed_as_utc(self) -> None:
        config = RunConfig.from_dict(_payload(start_utc="2024-01-01", end_utc="2024-02-01T00:00:00Z"))
        assert config.start_utc == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert config.to_dict()["end_utc"] == "2024-02-01T00:00:00Z"

    def test_to_dict(self) -> None:
        data = RunConfig.from_dict(
            _payload(session={"amount": 2, "direction": "SHORT"}, stop={"policy": "breakeven", "trigger_pct": 0.1})
        ).to_dict()
        assert data["symbol"] == "BTCUSD"
        assert data["session"] == {"amount": 2.0, "price_field": "close", "direction": "short"}
        assert data["stop"] == {"policy": "breakeven", "distance_pct": 0.05, "trigger_pct": 0.1}
        assert data["strategy"]["params"] == {"fast_period": 10}

    @pytest.mark.parametrize("missing", ["candles_csv", "report_dir", "strategy"])
    def test_required_keys(self, missing: str) -> None:
        payload = _payload()
        del payload[missing]
        with pytest.raises(ValueError, match=missing):
            RunConfig.from_dict(payload)

    def test_rejects_inverted_window(self) -> None:
        with pytest.raises(ValueError):
            RunConfig.from_dict(_payload(start_utc="2024-02-01", end_utc="2024-01-01"))

    def test_rejects_bad_timeframe(self) -> None:
        with pytest.raises(ValueError):
            RunConfig.from_dict(_payload(timeframe="7m"))

    def test_rejects_non_object_payload(self) -> None:
        with pytest.raises(ValueError):
            RunConfig.from_dict(["not", "a", "dict"])


class TestSections:
    def test_strategy_name_shorthand(self) -> None:
        assert StrategyConfig.from_raw("hma") == StrategyConfig(name="hma")
        with pytest.raises(ValueError):
            StrategyConfig.from_raw({"params": {}})

    def test_session_validation(self) -> None:
        with pytest.raises(ValueError):
            SessionConfig(amount=0)
        with pytest.raises(ValueError):
            SessionConfig(price_field="vwap")
        with pytest.raises(ValueError):
            SessionConfig(direction="sideways")

    def test_stop_validation(self) -> None:
        with pytest.raises(ValueError):
            StopConfig(policy="chandelier")
        with pytest.raises(ValueError):
            StopConfig(distance_pct=1.5)
        policy = StopConfig(policy="breakeven", trigger_pct=0.02).build()
        assert policy == BreakevenStop(distance_pct=0.05, trigger_pct=0.02)


    @pytest.mark.parametrize("policy", ["fixed", "trailing"])
    def test_trigger_pct_only_for_breakeven(self, policy: str) -> None:
        with pytest.raises(ValueError, match="breakeven"):
            StopConfig(policy=policy, trigger_pct=0.02)
        with pytest.raises(ValueError, match="breakeven"):
            RunConfig.from_dict(_payload(stop={"policy": policy, "distance_pct": 0.1, "trigger_pct": 0.02}))


@pytest.mark.parametrize("name", ["golden_cross_btc_d.json", "breakout_template.json"])
def test_example_configs_load(name: str) -> None:
    configs_dir = Path(__file__).resolve().parent.parent / "configs"
    config = RunConfig.from_path(configs_dir / name)
    assert config.symbol == "BTCUSD"
    assert config.candles_csv.name == "BTCUSD_D.csv"
    assert config.stop.build() is not None

def test_iso_utc() -> None:
    assert iso_utc(None) is None
    assert iso_utc(datetime(2024, 1, 1, tzinfo=timezone.utc)) == "2024-01-01T00:00:00Z"
    assert iso_utc("already") == "already"

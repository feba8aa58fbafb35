from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from core.market_metadata import normalize_symbol, normalize_timeframe

from .stops import STOP_POLICIES, StopPolicy, build_stop_policy

PRICE_FIELDS = ("open", "high", "low", "close")
DIRECTIONS = ("long", "short")


def iso_utc(value: Any) -> Optional[str]:
    """Serialize datetime-like values to ISO8601 UTC string when possible."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if hasattr(value, "isoformat"):
        try:
            return value.isoformat().replace("+00:00", "Z")
        except TypeError:
            return str(value)
    return str(value)


def _parse_datetime(value: Any | None) -> datetime | None:
    if value in (None, "", "None"):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    normalized = str(value).replace("Z", "+00:00")
    dt_value = datetime.fromisoformat(normalized)
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value.astimezone(timezone.utc)


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if value in (None, ""):
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a JSON object")
    return value


@dataclass
class StrategyConfig:
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, value: Any | None) -> "StrategyConfig":
        if isinstance(value, StrategyConfig):
            return value
        if isinstance(value, str):
            value = {"name": value}
        if not isinstance(value, dict):
            raise ValueError("strategy must be a JSON object with a name")
        name = str(value.get("name") or "").strip()
        if not name:
            raise ValueError("strategy.name is required")
        params = value.get("params") or {}
        if not isinstance(params, dict):
            raise ValueError("strategy.params must be a JSON object")
        return cls(name=name, params=dict(params))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "params": dict(self.params or {})}


@dataclass
class SessionConfig:
    amount: float = 1.0
    price_field: str = "close"
    direction: str = "long"

    def __post_init__(self) -> None:
        self.amount = float(self.amount)
        if self.amount <= 0:
            raise ValueError("session.amount must be positive")
        self.price_field = str(self.price_field or "close").strip().lower()
        if self.price_field not in PRICE_FIELDS:
            raise ValueError(f"session.price_field must be one of {list(PRICE_FIELDS)}")
        self.direction = str(self.direction or "long").strip().lower()
        if self.direction not in DIRECTIONS:
            raise ValueError(f"session.direction must be one of {list(DIRECTIONS)}")

    @classmethod
    def from_raw(cls, value: dict[str, Any]) -> "SessionConfig":
        return cls(
            amount=value.get("amount", 1.0),
            price_field=value.get("price_field", "close"),
            direction=value.get("direction", "long"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": float(self.amount),
            "price_field": self.price_field,
            "direction": self.direction,
        }


@dataclass
class StopConfig:
    policy: str = "fixed"
    distance_pct: float = 0.05
    trigger_pct: Optional[float] = None

    def __post_init__(self) -> None:
        self.policy = str(self.policy or "fixed").strip().lower()
        if self.policy not in STOP_POLICIES:
            raise ValueError(f"stop.policy must be one of {sorted(STOP_POLICIES)}")
        self.distance_pct = float(self.distance_pct)
        if self.trigger_pct is not None:
            if self.policy != "breakeven":
                raise ValueError("stop.trigger_pct only applies to the breakeven policy")
            self.trigger_pct = float(self.trigger_pct)
        # Validates the percentages eagerly.
        self.build()

    @classmethod
    def from_raw(cls, value: dict[str, Any]) -> "StopConfig":
        return cls(
            policy=value.get("policy", "fixed"),
            distance_pct=value.get("distance_pct", 0.05),
            trigger_pct=value.get("trigger_pct"),
        )

    def build(self) -> StopPolicy:
        options: dict[str, Any] = {"distance_pct": self.distance_pct}
        if self.trigger_pct is not None:
            options["trigger_pct"] = self.trigger_pct
        return build_stop_policy(self.policy, **options)

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy,
            "distance_pct": float(self.distance_pct),
            "trigger_pct": None if self.trigger_pct is None else float(self.trigger_pct),
        }


@dataclass
class RunConfig:
    candles_csv: Path
    report_dir: Path
    strategy: StrategyConfig
    symbol: str = "UNKNOWN"
    timeframe: str = "1d"
    start_utc: datetime | None = None
    end_utc: datetime | None = None
    session: SessionConfig = field(default_factory=SessionConfig)
    stop: StopConfig = field(default_factory=StopConfig)
    _config_dir: Path | None = None

    def __post_init__(self) -> None:
        self.symbol = normalize_symbol(self.symbol)
        self.timeframe = normalize_timeframe(self.timeframe)
        if self.start_utc and self.end_utc and self.start_utc >= self.end_utc:
            raise ValueError("start_utc must be before end_utc")

    @property
    def config_dir(self) -> Path | None:
        return self._config_dir

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        *,
        config_dir: Path | None = None,
    ) -> "RunConfig":
        if not isinstance(payload, dict):
            raise ValueError("Pipeline config must be a JSON object")

        candles_csv = Path(payload.get("candles_csv") or "")
        report_dir = Path(payload.get("report_dir") or "")
        if not payload.get("candles_csv"):
            raise ValueError("candles_csv is required")
        if not payload.get("report_dir"):
            raise ValueError("report_dir is required")
        if "strategy" not in payload:
            raise ValueError("strategy is required")

        return cls(
            candles_csv=candles_csv,
            report_dir=report_dir,
            strategy=StrategyConfig.from_raw(payload.get("strategy")),
            symbol=str(payload.get("symbol") or "UNKNOWN"),
            timeframe=str(payload.get("timeframe") or "1d"),
            start_utc=_parse_datetime(payload.get("start_utc")),
            end_utc=_parse_datetime(payload.get("end_utc")),
            session=SessionConfig.from_raw(_section(payload, "session")),
            stop=StopConfig.from_raw(_section(payload, "stop")),
            _config_dir=config_dir,
        )

    @classmethod
    def from_path(cls, path: str | Path) -> "RunConfig":
        config_path = Path(path)
        payload = json.loads(config_path.read_text(encoding="utf-8"))
        config = cls.from_dict(payload, config_dir=config_path.parent)
        if not config.candles_csv.is_absolute():
            config.candles_csv = (config_path.parent / config.candles_csv).resolve()
        if not config.report_dir.is_absolute():
            config.report_dir = (config_path.parent / config.report_dir).resolve()
        return config

    def to_dict(self) -> dict[str, Any]:
        return {
            "candles_csv": str(self.candles_csv),
            "report_dir": str(self.report_dir),
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "start_utc": iso_utc(self.start_utc),
            "end_utc": iso_utc(self.end_utc),
            "strategy": self.strategy.to_dict(),
            "session": self.session.to_dict(),
            "stop": self.stop.to_dict(),
        }

"""
Stop-loss state machine.

Tracks the protective stop order of the single open position.

State Flow:
    NEUTRAL -> WANT_INITIAL_STOP          (position opened)
    WANT_INITIAL_STOP -> STOP_SET         (initial stop order confirmed)
    STOP_SET -> WANT_MOVE                 (move condition met)
    WANT_MOVE -> STOP_SET                 (relocated stop confirmed)
    STOP_SET -> NEUTRAL                   (stop triggered, position gone)
    STOP_SET -> WANT_CANCEL_AFTER_CLOSE   (position closed by the strategy)
    WANT_CANCEL_AFTER_CLOSE -> NEUTRAL    (stop cancellation confirmed)

STOP_ORDER_FILLED is the broker's confirmation of whatever stop-order
operation is pending: placement, relocation or cancellation. Fills of the
position itself never reach this machine; they are recorded in the order log.

Any (state, event) pair outside the table raises ProtocolViolation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .candles import Candle

logger = logging.getLogger(__name__)


class StopState(str, Enum):
    NEUTRAL = "NEUTRAL"
    WANT_INITIAL_STOP = "WANT_INITIAL_STOP"
    STOP_SET = "STOP_SET"
    WANT_MOVE = "WANT_MOVE"
    WANT_CANCEL_AFTER_CLOSE = "WANT_CANCEL_AFTER_CLOSE"


class StopEvent(str, Enum):
    POSITION_OPENED = "POSITION_OPENED"
    STOP_ORDER_FILLED = "STOP_ORDER_FILLED"
    MOVE_CONDITION = "MOVE_CONDITION"
    STOPPED_OUT = "STOPPED_OUT"
    POSITION_CLOSED = "POSITION_CLOSED"


STOP_TRANSITIONS: dict[tuple[StopState, StopEvent], StopState] = {
    (StopState.NEUTRAL, StopEvent.POSITION_OPENED): StopState.WANT_INITIAL_STOP,
    (StopState.WANT_INITIAL_STOP, StopEvent.STOP_ORDER_FILLED): StopState.STOP_SET,
    (StopState.STOP_SET, StopEvent.MOVE_CONDITION): StopState.WANT_MOVE,
    (StopState.WANT_MOVE, StopEvent.STOP_ORDER_FILLED): StopState.STOP_SET,
    (StopState.STOP_SET, StopEvent.STOPPED_OUT): StopState.NEUTRAL,
    (StopState.STOP_SET, StopEvent.POSITION_CLOSED): StopState.WANT_CANCEL_AFTER_CLOSE,
    (StopState.WANT_CANCEL_AFTER_CLOSE, StopEvent.STOP_ORDER_FILLED): StopState.NEUTRAL,
}


class ProtocolViolation(RuntimeError):
    """An event arrived in a state that has no transition for it."""

    def __init__(self, state: StopState, event: StopEvent):
        self.state = state
        self.event = event
        super().__init__(f"Stop-loss protocol violation: event {event.value} is not valid in state {state.value}")


def next_state(state: StopState, event: StopEvent) -> StopState:
    """Pure transition function over the stop-loss table."""
    try:
        return STOP_TRANSITIONS[(state, event)]
    except KeyError:
        raise ProtocolViolation(state, event) from None


@dataclass
class StopLossStateMachine:
    """Current-state holder driven by the simulator session."""

    state: StopState = StopState.NEUTRAL
    history: list[tuple[StopState, StopEvent, StopState]] = field(default_factory=list)

    def can_handle(self, event: StopEvent) -> bool:
        return (self.state, event) in STOP_TRANSITIONS

    def handle(self, event: StopEvent) -> StopState:
        previous = self.state
        self.state = next_state(previous, event)
        self.history.append((previous, event, self.state))
        logger.debug("Stop state %s --%s--> %s", previous.value, event.value, self.state.value)
        return self.state

    def reset(self) -> None:
        self.state = StopState.NEUTRAL
        self.history.clear()


# ---------------------------------------------------------------------------
# Stop policies
# ---------------------------------------------------------------------------


class StopPolicy(Protocol):
    """Where to place the initial stop and when to relocate it."""

    def initial_stop(self, side: str, entry_price: float, candle: Candle) -> float:
        ...

    def next_stop(self, side: str, entry_price: float, current_stop: float, candle: Candle) -> float | None:
        ...


def _check_pct(name: str, value: float) -> float:
    pct = float(value)
    if not 0 < pct < 1:
        raise ValueError(f"{name} must be between 0 and 1 (exclusive), got {value}")
    return pct


def _offset(side: str, price: float, pct: float) -> float:
    # Long stops sit below price, short stops above.
    if side == "BUY":
        return price * (1.0 - pct)
    return price * (1.0 + pct)


def _is_tighter(side: str, candidate: float, current: float) -> bool:
    if side == "BUY":
        return candidate > current + 1e-12
    return candidate < current - 1e-12


@dataclass(frozen=True)
class FixedStop:
    distance_pct: float = 0.05

    def __post_init__(self) -> None:
        _check_pct("distance_pct", self.distance_pct)

    def initial_stop(self, side: str, entry_price: float, candle: Candle) -> float:
        return _offset(side, entry_price, self.distance_pct)

    def next_stop(self, side: str, entry_price: float, current_stop: float, candle: Candle) -> float | None:
        return None


@dataclass(frozen=True)
class TrailingStop:
    """Ratchets the stop behind the close; never loosens it."""

    distance_pct: float = 0.05

    def __post_init__(self) -> None:
        _check_pct("distance_pct", self.distance_pct)

    def initial_stop(self, side: str, entry_price: float, candle: Candle) -> float:
        return _offset(side, entry_price, self.distance_pct)

    def next_stop(self, side: str, entry_price: float, current_stop: float, candle: Candle) -> float | None:
        candidate = _offset(side, float(candle.close), self.distance_pct)
        if _is_tighter(side, candidate, current_stop):
            return candidate
        return None


@dataclass(frozen=True)
class BreakevenStop:
    """Moves the stop to the entry price once price has advanced trigger_pct."""

    distance_pct: float = 0.05
    trigger_pct: float = 0.05

    def __post_init__(self) -> None:
        _check_pct("distance_pct", self.distance_pct)
        _check_pct("trigger_pct", self.trigger_pct)

    def initial_stop(self, side: str, entry_price: float, candle: Candle) -> float:
        return _offset(side, entry_price, self.distance_pct)

    def next_stop(self, side: str, entry_price: float, current_stop: float, candle: Candle) -> float | None:
        if not _is_tighter(side, entry_price, current_stop):
            return None
        if side == "BUY":
            advanced = float(candle.close) >= entry_price * (1.0 + self.trigger_pct)
        else:
            advanced = float(candle.close) <= entry_price * (1.0 - self.trigger_pct)
        return float(entry_price) if advanced else None


STOP_POLICIES: dict[str, type] = {
    "fixed": FixedStop,
    "trailing": TrailingStop,
    "breakeven": BreakevenStop,
}


def build_stop_policy(name: str, **options: Any) -> StopPolicy:
    key = str(name or "").strip().lower()
    if key not in STOP_POLICIES:
        raise ValueError(f"Unknown stop policy: {name!r}. Available: {sorted(STOP_POLICIES)}")
    return STOP_POLICIES[key](**options)

"""Simulator session: candle-driven event loop, market fills and the order log."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import pandas as pd

from .candles import Candle
from .stops import FixedStop, StopEvent, StopLossStateMachine, StopPolicy
from .strategy import Strategy, supports_short

logger = logging.getLogger(__name__)

CandleObserver = Callable[[Candle], Any]
ReferencePrice = Callable[[Candle], float]

_PRICE_FIELDS = ("open", "high", "low", "close")

FILL_COLUMNS: list[str] = ["timestamp", "side", "price", "amount", "reason"]


class SequencingError(RuntimeError):
    """Order log or candle clock ordering was violated inside the session."""


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @classmethod
    def from_value(cls, value: Any) -> "Side":
        side = str(value or "").strip().upper()
        if side in {"BUY", "LONG"}:
            return cls.BUY
        if side in {"SELL", "SHORT"}:
            return cls.SELL
        raise ValueError(f"Unsupported side value: {value}")


@dataclass(frozen=True)
class Fill:
    """One simulated market-order execution."""

    timestamp: datetime
    price: float
    amount: float
    side: Side
    reason: str = "signal"

    def to_record(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "side": self.side.value,
            "price": float(self.price),
            "amount": float(self.amount),
            "reason": self.reason,
        }


class OrderLog:
    """Append-only, time-ordered fills whose sides strictly alternate.

    Even positions (0, 2, ...) open a position, odd positions close it with
    the opposite side and the same amount.
    """

    def __init__(self, fills: Iterable[Fill] = ()):
        self._fills: list[Fill] = []
        for fill in fills:
            self.append(fill)

    def append(self, fill: Fill) -> None:
        if fill.amount <= 0:
            raise SequencingError(f"Fill amount must be positive, got {fill.amount}")
        last = self._fills[-1] if self._fills else None
        if last is not None:
            if fill.side == last.side:
                raise SequencingError(
                    f"Order log alternation violated: {fill.side.value} fill at "
                    f"{fill.timestamp.isoformat()} follows another {last.side.value} fill"
                )
            if fill.timestamp < last.timestamp:
                raise SequencingError(
                    f"Order log time went backwards: {fill.timestamp.isoformat()} < {last.timestamp.isoformat()}"
                )
            if self.is_open and fill.amount != last.amount:
                raise SequencingError(
                    f"Closing fill amount {fill.amount} does not match opening amount {last.amount}"
                )
        self._fills.append(fill)

    def __len__(self) -> int:
        return len(self._fills)

    def __iter__(self) -> Iterator[Fill]:
        return iter(self._fills)

    def __getitem__(self, index: int) -> Fill:
        return self._fills[index]

    @property
    def fills(self) -> tuple[Fill, ...]:
        return tuple(self._fills)

    @property
    def is_open(self) -> bool:
        return len(self._fills) % 2 == 1

    @property
    def open_fill(self) -> Fill | None:
        return self._fills[-1] if self.is_open else None

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([fill.to_record() for fill in self._fills], columns=FILL_COLUMNS)


def resolve_reference_price(value: str | ReferencePrice) -> ReferencePrice:
    """Turn ``"close"``/``"open"``/``"high"``/``"low"`` or a callable into a price getter."""
    if callable(value):
        return value
    name = str(value or "").strip().lower()
    if name not in _PRICE_FIELDS:
        raise ValueError(f"Unsupported reference price: {value!r}. Use one of {list(_PRICE_FIELDS)} or a callable")
    return lambda candle: float(getattr(candle, name))


class SimulatorSession:
    """Owns the order log, the stop-loss machine and the last observed price.

    A session trades a single direction: long sessions open with BUY and
    ask the long predicates, short sessions open with SELL and ask the
    short ones.

    ``process`` handles one candle completely before returning. The session
    never closes a position on its own at the end of the stream; reporting
    takes care of positions that are still open.
    """

    def __init__(
        self,
        strategy: Strategy,
        *,
        stop_policy: StopPolicy | None = None,
        amount: float = 1.0,
        reference_price: str | ReferencePrice = "close",
        direction: str | Side = "long",
        observers: Iterable[CandleObserver] = (),
    ):
        if float(amount) <= 0:
            raise ValueError("amount must be positive")
        entry_side = direction if isinstance(direction, Side) else Side.from_value(direction)
        if entry_side is Side.SELL and not supports_short(strategy):
            raise TypeError("Short direction requires should_open_short() and should_close_short() on the strategy")
        self.strategy = strategy
        self.stop_policy: StopPolicy = stop_policy or FixedStop()
        self.amount = float(amount)
        self.reference_price = resolve_reference_price(reference_price)
        self.entry_side = entry_side
        self.order_log = OrderLog()
        self.stop_machine = StopLossStateMachine()
        self.stop_price: float | None = None
        self.price: float | None = None
        self.timestamp: datetime | None = None
        self.candles_seen = 0
        self._observers: list[CandleObserver] = list(observers)
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def position_side(self) -> Side | None:
        open_fill = self.order_log.open_fill
        return None if open_fill is None else open_fill.side

    def add_observer(self, observer: CandleObserver) -> None:
        self._observers.append(observer)

    def run(self, candles: Iterable[Candle]) -> SimulatorSession:
        for candle in candles:
            self.process(candle)
        self.finish()
        return self

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        logger.info(
            "Simulation finished: candles=%s fills=%s stop_state=%s",
            self.candles_seen,
            len(self.order_log),
            self.stop_machine.state.value,
        )
        if self.order_log.is_open:
            logger.warning(
                "Position still open at end of stream (%s since %s)",
                self.order_log.open_fill.side.value,
                self.order_log.open_fill.timestamp.isoformat(),
            )

    def process(self, candle: Candle) -> None:
        if self._finished:
            raise RuntimeError("Session is finished; build a new session to replay candles")
        self._advance_clock(candle)
        for observer in self._observers:
            observer(candle)

        side = self.position_side
        if side is None:
            self._maybe_open(candle)
        else:
            self._manage_position(side, candle)

    def _advance_clock(self, candle: Candle) -> None:
        if self.timestamp is not None and candle.timestamp <= self.timestamp:
            raise SequencingError(
                f"Candle at {candle.timestamp.isoformat()} is not after {self.timestamp.isoformat()}"
            )
        self.timestamp = candle.timestamp
        self.price = float(candle.close)
        self.candles_seen += 1

    def _maybe_open(self, candle: Candle) -> None:
        side = self.entry_side
        wants_open = self.strategy.should_open_long() if side is Side.BUY else self.strategy.should_open_short()
        if not wants_open:
            return

        price = float(self.reference_price(candle))
        self._append_fill(candle, price, side, "signal")
        self.stop_machine.handle(StopEvent.POSITION_OPENED)
        self.stop_price = float(self.stop_policy.initial_stop(side.value, price, candle))
        self.stop_machine.handle(StopEvent.STOP_ORDER_FILLED)
        logger.debug("Initial stop for %s entry at %s placed at %s", side.value, price, self.stop_price)

        # An entry filled before the close still trades through the rest of its candle.
        if price != float(candle.close) and self._stop_breached(side, candle):
            logger.debug("Stop %s hit on the entry candle %s", self.stop_price, candle.timestamp.isoformat())
            self._append_fill(candle, float(self.stop_price), side.opposite, "stop")
            self.stop_machine.handle(StopEvent.STOPPED_OUT)
            self.stop_price = None

    def _manage_position(self, side: Side, candle: Candle) -> None:
        exit_price = self._stop_exit_price(side, candle)
        if exit_price is not None:
            self._append_fill(candle, exit_price, side.opposite, "stop")
            self.stop_machine.handle(StopEvent.STOPPED_OUT)
            self.stop_price = None
            return

        if self._should_close(side):
            self._append_fill(candle, float(self.reference_price(candle)), side.opposite, "signal")
            self.stop_machine.handle(StopEvent.POSITION_CLOSED)
            # The simulated broker cancels the resting stop immediately.
            self.stop_machine.handle(StopEvent.STOP_ORDER_FILLED)
            self.stop_price = None
            return

        entry_price = float(self.order_log.open_fill.price)
        moved = self.stop_policy.next_stop(side.value, entry_price, float(self.stop_price), candle)
        if moved is not None and float(moved) != self.stop_price:
            self.stop_machine.handle(StopEvent.MOVE_CONDITION)
            logger.debug("Moving stop from %s to %s at %s", self.stop_price, moved, candle.timestamp.isoformat())
            self.stop_price = float(moved)
            self.stop_machine.handle(StopEvent.STOP_ORDER_FILLED)

    def _should_close(self, side: Side) -> bool:
        if side is Side.BUY:
            return bool(self.strategy.should_close_long())
        return bool(self.strategy.should_close_short())

    def _stop_breached(self, side: Side, candle: Candle) -> bool:
        if self.stop_price is None:
            return False
        if side is Side.BUY:
            return float(candle.low) <= float(self.stop_price)
        return float(candle.high) >= float(self.stop_price)

    def _stop_exit_price(self, side: Side, candle: Candle) -> float | None:
        if not self._stop_breached(side, candle):
            return None
        stop = float(self.stop_price)
        # A bar that opens beyond the stop fills at the open.
        if side is Side.BUY:
            return min(float(candle.open), stop)
        return max(float(candle.open), stop)

    def _append_fill(self, candle: Candle, price: float, side: Side, reason: str) -> None:
        fill = Fill(timestamp=candle.timestamp, price=float(price), amount=self.amount, side=side, reason=reason)
        self.order_log.append(fill)
        logger.debug("Fill %s %s @ %s (%s) at %s", side.value, self.amount, price, reason, candle.timestamp.isoformat())

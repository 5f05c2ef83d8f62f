"""
Interactive crash round.

The stake is already debited when a round is created. The multiplier climbs
0.01 per tick from 1.00; the first cash-out before the hidden crash point
settles the round, any later signal is ignored. Reaching the crash point
or abandoning the round settles it as a loss.
"""

import math
import threading
import time
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from ledger.models import Transaction, money

from .rules import GameType, Outcome

STEP = Decimal("0.01")


class RoundState(str, Enum):
    FLYING = "flying"
    CASHED_OUT = "cashed_out"
    CRASHED = "crashed"
    ABANDONED = "abandoned"


class CrashRound:
    def __init__(
        self,
        round_id: UUID,
        debit: Transaction,
        crash_point: Decimal,
        on_settle: Callable[["CrashRound", Outcome], None],
        clock: Callable[[], float] = time.monotonic,
        tick_seconds: float = 0.1,
    ):
        self.round_id = round_id
        self.debit = debit
        self.user_id = debit.user_id
        self.is_demo = debit.is_demo
        self.stake = Decimal(debit.amount)
        self.crash_point = crash_point
        self.multiplier = Decimal("1.00")
        self.state = RoundState.FLYING
        self.outcome: Optional[Outcome] = None
        self._on_settle = on_settle
        self._clock = clock
        self._tick_seconds = tick_seconds
        self._started_at = clock()
        self._ticks = 0
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self.state == RoundState.FLYING

    def advance(self, ticks: int = 1) -> Decimal:
        with self._lock:
            if not self.is_open or ticks <= 0:
                return self.multiplier
            self._ticks += ticks
            target = self.multiplier + STEP * ticks
            if target >= self.crash_point:
                self.multiplier = self.crash_point
                self._settle(RoundState.CRASHED, money(0))
            else:
                self.multiplier = target
            return self.multiplier

    def advance_to(self, multiplier) -> Decimal:
        gap = (Decimal(str(multiplier)) - self.multiplier) / STEP
        return self.advance(math.ceil(gap))

    def sync(self) -> Decimal:
        """Catch the multiplier up with wall-clock time since the round started."""
        with self._lock:
            elapsed = int((self._clock() - self._started_at) / self._tick_seconds)
            return self.advance(elapsed - self._ticks)

    def cash_out(self) -> Optional[Outcome]:
        with self._lock:
            if not self.is_open:
                return None
            return self._settle(RoundState.CASHED_OUT, money(self.stake * self.multiplier))

    def abandon(self) -> Optional[Outcome]:
        with self._lock:
            if not self.is_open:
                return None
            return self._settle(RoundState.ABANDONED, money(0))

    def _settle(self, state: RoundState, payout: Decimal) -> Outcome:
        self.state = state
        self.outcome = Outcome(
            game=GameType.CRASH,
            payout=payout,
            multiplier=self.multiplier if state == RoundState.CASHED_OUT else None,
            details={
                "round_state": state.value,
                "crash_point": str(self.crash_point),
                "final_multiplier": str(self.multiplier),
            },
        )
        self._on_settle(self, self.outcome)
        return self.outcome

    def to_dict(self) -> dict:
        data = {
            "round_id": str(self.round_id),
            "state": self.state.value,
            "stake": str(self.stake),
            "multiplier": str(self.multiplier),
            "is_demo": self.is_demo,
        }
        if not self.is_open:
            data["crash_point"] = str(self.crash_point)
        if self.outcome is not None:
            data["outcome"] = self.outcome.to_dict()
        return data

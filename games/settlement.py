"""
Wagering settlement.

Every bet is paid for before it is played: the stake is written as a
completed purchase, then the outcome is drawn, then any payout is written
as a completed winnings credit. A debit is never rolled back. When the
credit step fails the round is left abandoned: the loss stands, no credit
exists, and the round id can not be replayed into a second debit.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from ledger.accounts import AccountService
from ledger.errors import (
    BetInProgressError,
    InsufficientFundsError,
    InvalidStakeError,
    InvalidStateTransitionError,
    NotFoundError,
    RoundAbandonedError,
)
from ledger.models import Transaction, TransactionStatus, TransactionType, parse_amount
from ledger.service import LedgerService

from .crash import CrashRound
from .rules import CrashGame, Game, GameType, Outcome

logger = logging.getLogger(__name__)


@dataclass
class BetResult:
    round_id: UUID
    debit: Transaction
    outcome: Outcome
    credit: Optional[Transaction] = None

    @property
    def net(self) -> Decimal:
        return self.outcome.payout - Decimal(self.debit.amount)

    def to_dict(self) -> dict:
        return {
            "round_id": str(self.round_id),
            "debit": self.debit.model_dump(mode="json"),
            "outcome": self.outcome.to_dict(),
            "credit": self.credit.model_dump(mode="json") if self.credit else None,
            "net": str(self.net),
        }


class RoundRegistry:
    """Rounds seen by this process.

    ``results`` maps a round id to its settled result, or to None while the
    debit is committed but the round is unresolved (open or abandoned).
    ``owners`` records the partition that charged each round id.
    """

    def __init__(self):
        self.results: dict[UUID, Optional[BetResult]] = {}
        self.open_rounds: dict[UUID, CrashRound] = {}
        self.owners: dict[UUID, tuple[UUID, bool]] = {}
        self._lock = threading.Lock()

    def reserve(self, round_id: UUID, user_id: UUID, is_demo: bool) -> bool:
        with self._lock:
            if round_id in self.owners:
                return False
            self.owners[round_id] = (user_id, is_demo)
            self.results[round_id] = None
            return True

    def release(self, round_id: UUID) -> None:
        with self._lock:
            self.owners.pop(round_id, None)
            self.results.pop(round_id, None)

    def owner_of(self, round_id: UUID) -> Optional[tuple[UUID, bool]]:
        return self.owners.get(round_id)

    def add_open(self, crash_round: CrashRound) -> None:
        with self._lock:
            self.open_rounds[crash_round.round_id] = crash_round

    def close(self, round_id: UUID, result: Optional[BetResult]) -> None:
        with self._lock:
            self.open_rounds.pop(round_id, None)
            self.results[round_id] = result

    def open_round_for(self, user_id: UUID, is_demo: bool) -> Optional[CrashRound]:
        with self._lock:
            rounds = list(self.open_rounds.values())
        for crash_round in rounds:
            if crash_round.user_id == user_id and crash_round.is_demo == is_demo:
                return crash_round
        return None


class WageringService:
    def __init__(
        self,
        ledger: LedgerService,
        accounts: AccountService,
        registry: Optional[RoundRegistry] = None,
        rng: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.accounts = accounts
        self.registry = registry or RoundRegistry()
        self.rng = rng or random.Random()
        self.clock = clock

    def place_bet(self, stake, game: Game, round_id: Optional[UUID] = None) -> BetResult:
        user_id, is_demo = self.accounts.current_mode()
        round_id = round_id or uuid4()

        with self.ledger.lock_for(user_id, is_demo):
            previous = self._replay(round_id, user_id, is_demo)
            if previous is not None:
                return previous

            value = self._validate_stake(stake, game, user_id, is_demo)
            debit = self._debit(user_id, is_demo, value, game.game_type, round_id)

        outcome = game.resolve(value, self.rng)
        credit = self._credit(debit, outcome, round_id)

        result = BetResult(round_id=round_id, debit=debit, outcome=outcome, credit=credit)
        self.registry.close(round_id, result)
        logger.info(
            "Round %s (%s) settled for user %s: stake %s payout %s",
            round_id, game.game_type.value, user_id, value, outcome.payout,
        )
        return result

    def start_crash_round(self, stake, game: Optional[CrashGame] = None, round_id: Optional[UUID] = None) -> CrashRound:
        user_id, is_demo = self.accounts.current_mode()
        game = game or CrashGame()
        round_id = round_id or uuid4()

        with self.ledger.lock_for(user_id, is_demo):
            if self.registry.open_round_for(user_id, is_demo) is not None:
                raise BetInProgressError("Finish the current crash round before starting another")
            if self._replay(round_id, user_id, is_demo) is not None:
                raise InvalidStateTransitionError(f"Round {round_id} is already settled")

            value = self._validate_stake(stake, None, user_id, is_demo)
            debit = self._debit(user_id, is_demo, value, GameType.CRASH, round_id)

            crash_round = CrashRound(
                round_id,
                debit,
                Decimal(game.crash_point_source(self.rng)),
                on_settle=self._settle_crash,
                clock=self.clock,
                tick_seconds=self.ledger.settings.crash_tick_seconds,
            )
            self.registry.add_open(crash_round)
        logger.info("Crash round %s started for user %s with stake %s", round_id, user_id, value)
        return crash_round

    def get_crash_round(self, round_id: UUID) -> CrashRound:
        user_id, is_demo = self.accounts.current_mode()
        crash_round = self.registry.open_rounds.get(round_id)
        if crash_round is None or crash_round.user_id != user_id or crash_round.is_demo != is_demo:
            raise NotFoundError(f"No open crash round {round_id}")
        return crash_round

    def get_result(self, round_id: UUID) -> Optional[BetResult]:
        return self.registry.results.get(round_id)

    def _settle_crash(self, crash_round: CrashRound, outcome: Outcome) -> None:
        try:
            credit = self._credit(crash_round.debit, outcome, crash_round.round_id)
        except Exception:
            self.registry.close(crash_round.round_id, None)
            raise
        self.registry.close(crash_round.round_id, BetResult(
            round_id=crash_round.round_id, debit=crash_round.debit, outcome=outcome, credit=credit,
        ))
        logger.info(
            "Crash round %s %s at %s, payout %s",
            crash_round.round_id, crash_round.state.value, crash_round.multiplier, outcome.payout,
        )

    def _replay(self, round_id: UUID, user_id: UUID, is_demo: bool) -> Optional[BetResult]:
        owner = self.registry.owner_of(round_id)
        if owner is not None and owner != (user_id, is_demo):
            raise NotFoundError(f"Round {round_id} not found")

        if round_id in self.registry.open_rounds:
            raise BetInProgressError(f"Round {round_id} is still in progress")

        if round_id in self.registry.results:
            result = self.registry.results[round_id]
            if result is None:
                raise RoundAbandonedError(f"Round {round_id} was charged but never settled")
            return result

        if self.ledger.find_by_detail(user_id, is_demo, "round_id", str(round_id)):
            raise RoundAbandonedError(f"Round {round_id} was charged but never settled")
        return None

    def _validate_stake(self, stake, game: Optional[Game], user_id: UUID, is_demo: bool) -> Decimal:
        value = parse_amount(stake)
        if value is None or value <= 0:
            raise InvalidStakeError(f"Stake must be a positive amount, got {stake!r}")
        if game is not None:
            game.validate(value)

        balance = self.ledger.compute_balance(user_id, is_demo)
        if value > balance:
            raise InsufficientFundsError(f"Stake {value} exceeds balance {balance}")
        return value

    def _debit(self, user_id: UUID, is_demo: bool, stake: Decimal, game: GameType, round_id: UUID) -> Transaction:
        if not self.registry.reserve(round_id, user_id, is_demo):
            raise NotFoundError(f"Round {round_id} not found")
        try:
            return self.ledger.append(
                user_id,
                TransactionType.PURCHASE,
                stake,
                TransactionStatus.COMPLETED,
                is_demo=is_demo,
                details={"game": game.value, "round_id": str(round_id)},
            )
        except Exception:
            self.registry.release(round_id)
            raise

    def _credit(self, debit: Transaction, outcome: Outcome, round_id: UUID) -> Optional[Transaction]:
        if not outcome.won:
            return None
        try:
            return self.ledger.append(
                debit.user_id,
                TransactionType.WINNINGS,
                outcome.payout,
                TransactionStatus.COMPLETED,
                is_demo=debit.is_demo,
                details={"game": outcome.game.value, "round_id": str(round_id),
                         "multiplier": str(outcome.multiplier) if outcome.multiplier is not None else None},
            )
        except Exception:
            logger.error("Credit for round %s failed; debit %s stands", round_id, debit.id)
            raise

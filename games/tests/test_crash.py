"""
Tests for interactive crash rounds.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import UUID, uuid4

from ledger.accounts import AccountService
from ledger.auth import StaticSession
from ledger.config import Settings
from ledger.errors import BetInProgressError, InvalidStateTransitionError, NotFoundError
from ledger.models import AccountType, TransactionType
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage
from games.crash import RoundState
from games.rules import CrashGame, WheelGame
from games.settlement import WageringService


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def setup(crash_point="3.00", clock=None):
    storage = InMemoryStorage()
    ledger = LedgerService(storage, Settings())
    accounts = AccountService(storage, StaticSession(USER_ID))
    accounts.switch_account_type(AccountType.DEMO)
    wagering = WageringService(ledger, accounts, clock=clock or FakeClock())
    game = CrashGame(crash_point_source=lambda rng: Decimal(crash_point))
    return ledger, wagering, game


def purchases(ledger):
    return ledger.storage.query_transactions(user_id=USER_ID, type=TransactionType.PURCHASE)


def winnings(ledger):
    return ledger.storage.query_transactions(user_id=USER_ID, type=TransactionType.WINNINGS)


class TestCrashRound:
    """Tests for the crash round lifecycle."""

    def test_stake_debited_at_start(self):
        """Starting a round writes the purchase immediately."""
        ledger, wagering, game = setup()

        crash_round = wagering.start_crash_round("10.00", game)

        assert crash_round.state == RoundState.FLYING
        assert crash_round.multiplier == Decimal("1.00")
        assert ledger.compute_balance(USER_ID, True) == Decimal("90.00")

    def test_cash_out_at_two(self):
        """Cashing out at 2.00 on a 10.00 stake nets +10."""
        ledger, wagering, game = setup()
        crash_round = wagering.start_crash_round("10.00", game)

        crash_round.advance_to("2.00")
        outcome = crash_round.cash_out()

        assert crash_round.state == RoundState.CASHED_OUT
        assert outcome.payout == Decimal("20.00")
        assert outcome.multiplier == Decimal("2.00")
        assert ledger.compute_balance(USER_ID, True) == Decimal("110.00")
        assert wagering.get_result(crash_round.round_id).net == Decimal("10.00")

    def test_crash_before_cash_out(self):
        """Reaching the crash point loses the stake."""
        ledger, wagering, game = setup(crash_point="1.50")
        crash_round = wagering.start_crash_round("10.00", game)

        crash_round.advance_to("1.50")

        assert crash_round.state == RoundState.CRASHED
        assert crash_round.cash_out() is None
        assert winnings(ledger) == []
        assert ledger.compute_balance(USER_ID, True) == Decimal("90.00")

    def test_single_cash_out(self):
        """A second cash-out signal is ignored."""
        ledger, wagering, game = setup()
        crash_round = wagering.start_crash_round("10.00", game)
        crash_round.advance(50)

        first = crash_round.cash_out()
        second = crash_round.cash_out()

        assert first.payout == Decimal("15.00")
        assert second is None
        assert len(winnings(ledger)) == 1

    def test_abandon_is_a_loss(self):
        """Leaving mid-flight forfeits the stake."""
        ledger, wagering, game = setup()
        crash_round = wagering.start_crash_round("10.00", game)
        crash_round.advance(20)

        crash_round.abandon()

        assert crash_round.state == RoundState.ABANDONED
        assert winnings(ledger) == []
        assert ledger.compute_balance(USER_ID, True) == Decimal("90.00")

    def test_sync_follows_clock(self):
        """The multiplier climbs 0.01 per 100 ms."""
        clock = FakeClock()
        _, wagering, game = setup(clock=clock)
        crash_round = wagering.start_crash_round("10.00", game)

        clock.now = 2.55
        assert crash_round.sync() == Decimal("1.25")
        clock.now = 60.0
        crash_round.sync()
        assert crash_round.state == RoundState.CRASHED
        assert crash_round.multiplier == Decimal("3.00")

    def test_crash_point_hidden_while_flying(self):
        """The crash point is only revealed once the round is over."""
        _, wagering, game = setup()
        crash_round = wagering.start_crash_round("10.00", game)

        assert "crash_point" not in crash_round.to_dict()
        crash_round.abandon()
        assert crash_round.to_dict()["crash_point"] == "3.00"


class TestCrashRoundRegistry:
    """Tests for open round bookkeeping."""

    def test_one_open_round_per_user(self):
        """A second round can not start while one is flying."""
        _, wagering, game = setup()
        wagering.start_crash_round("10.00", game)

        with pytest.raises(BetInProgressError):
            wagering.start_crash_round("10.00", game)

    def test_settled_round_leaves_open_set(self):
        """Settled rounds are no longer reachable as open rounds."""
        _, wagering, game = setup()
        crash_round = wagering.start_crash_round("10.00", game)
        assert wagering.get_crash_round(crash_round.round_id) is crash_round

        crash_round.cash_out()

        with pytest.raises(NotFoundError):
            wagering.get_crash_round(crash_round.round_id)
        assert wagering.start_crash_round("10.00", game).is_open

    def test_replay_of_open_round(self):
        """Placing a bet under an open round id is refused."""
        _, wagering, game = setup()
        crash_round = wagering.start_crash_round("10.00", game)

        with pytest.raises(BetInProgressError):
            wagering.place_bet("10.00", CrashGame(auto_cash_out=Decimal("2.00")), crash_round.round_id)

    def test_settled_round_id_not_charged_again(self):
        """Reusing the id of a settled bet for a crash round is refused without a debit."""
        ledger, wagering, game = setup()
        round_id = uuid4()
        settled = wagering.place_bet("10.00", WheelGame(), round_id)
        balance = ledger.compute_balance(USER_ID, True)

        with pytest.raises(InvalidStateTransitionError):
            wagering.start_crash_round("10.00", game, round_id=round_id)

        assert ledger.compute_balance(USER_ID, True) == balance
        assert len(purchases(ledger)) == 1
        assert wagering.get_result(round_id) is settled

    def test_concurrent_cash_out_and_sync_settle_once(self):
        """Racing cash-out and sync calls write at most one payout."""
        clock = FakeClock()
        ledger, wagering, game = setup(crash_point="5.00", clock=clock)
        crash_round = wagering.start_crash_round("10.00", game)
        crash_round.advance_to("2.00")
        clock.now = 60.0

        with ThreadPoolExecutor(max_workers=8) as pool:
            for _ in range(8):
                pool.submit(crash_round.cash_out)
                pool.submit(crash_round.sync)

        assert not crash_round.is_open
        assert len(winnings(ledger)) <= 1
        assert wagering.get_result(crash_round.round_id).outcome == crash_round.outcome

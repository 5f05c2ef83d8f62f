import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger.accounts import AccountService
from ledger.errors import (
    InsufficientFundsError,
    InvalidBetError,
    InvalidStateTransitionError,
    NotFoundError,
)
from ledger.models import (
    Draw,
    DrawStatus,
    Ticket,
    TicketStatus,
    TransactionStatus,
    TransactionType,
    money,
    utcnow,
)
from ledger.service import LedgerService

from .rules import GameType

logger = logging.getLogger(__name__)

PICK_COUNT = 6
NUMBER_RANGE = range(1, 50)

# matched numbers -> fixed prize; a full match shares the jackpot instead
PRIZE_TABLE = {
    5: Decimal("1000.00"),
    4: Decimal("100.00"),
    3: Decimal("10.00"),
}


def validate_numbers(numbers) -> list[int]:
    if not isinstance(numbers, (list, tuple)) or len(numbers) != PICK_COUNT:
        raise InvalidBetError(f"Pick exactly {PICK_COUNT} numbers")
    if any(isinstance(n, bool) or not isinstance(n, int) or n not in NUMBER_RANGE for n in numbers):
        raise InvalidBetError("Numbers must be whole numbers from 1 to 49")
    if len(set(numbers)) != PICK_COUNT:
        raise InvalidBetError("Numbers must be distinct")
    return sorted(numbers)


class LotteryService:
    def __init__(self, ledger: LedgerService, accounts: AccountService):
        self.ledger = ledger
        self.accounts = accounts
        self.storage = ledger.storage
        self.settings = ledger.settings

    def next_draw(self, now: Optional[datetime] = None) -> Optional[Draw]:
        now = now or utcnow()
        upcoming = [d for d in self.storage.query_draws(status=DrawStatus.SCHEDULED) if d.draw_date > now]
        return upcoming[0] if upcoming else None

    def purchase_ticket(self, numbers, draw_id: Optional[UUID] = None, now: Optional[datetime] = None) -> Ticket:
        user_id, is_demo = self.accounts.current_mode()
        picks = validate_numbers(numbers)
        now = now or utcnow()

        draw = self.storage.get_draw(draw_id) if draw_id else self.next_draw(now)
        if draw is None:
            raise NotFoundError("No scheduled draw to enter")
        if draw.status != DrawStatus.SCHEDULED:
            raise InvalidStateTransitionError(f"Draw {draw.id} is closed")
        if draw.draw_date <= now:
            raise InvalidStateTransitionError(f"Draw {draw.id} took place at {draw.draw_date.isoformat()}")

        price = money(self.settings.ticket_price)
        with self.ledger.lock_for(user_id, is_demo):
            balance = self.ledger.compute_balance(user_id, is_demo)
            if price > balance:
                raise InsufficientFundsError(f"Ticket costs {price}, balance is {balance}")

            debit = self.ledger.append(
                user_id,
                TransactionType.PURCHASE,
                price,
                TransactionStatus.COMPLETED,
                is_demo=is_demo,
                details={"game": GameType.LOTTERY.value, "draw_id": str(draw.id), "numbers": picks},
            )
        ticket = self.storage.insert_ticket(Ticket(
            user_id=user_id,
            draw_id=draw.id,
            numbers=picks,
            is_demo=is_demo,
            purchase_transaction_id=debit.id,
        ))
        logger.info("Ticket %s bought by %s for draw %s", ticket.id, user_id, draw.id)
        return ticket

    def list_tickets(self) -> list[Ticket]:
        user_id = self.accounts.current_account().user_id
        return self.storage.query_tickets(user_id=user_id)

    def create_draw(self, winning_numbers, draw_date: datetime, jackpot) -> Draw:
        self.accounts.require_admin()
        amount = money(jackpot)
        if amount <= 0:
            raise InvalidBetError("Jackpot must be positive")
        draw = self.storage.insert_draw(Draw(
            winning_numbers=validate_numbers(winning_numbers),
            draw_date=draw_date,
            jackpot=amount,
        ))
        logger.info("Draw %s scheduled for %s with jackpot %s", draw.id, draw_date.isoformat(), amount)
        return draw

    def settle_draw(self, draw_id: UUID) -> list[Ticket]:
        self.accounts.require_admin()
        draw = self.storage.get_draw(draw_id)
        if draw is None:
            raise NotFoundError(f"Draw {draw_id} not found")
        if draw.status != DrawStatus.SCHEDULED:
            raise InvalidStateTransitionError(f"Draw {draw_id} was already settled")

        winning = set(draw.winning_numbers)
        tickets = [t for t in self.storage.query_tickets(draw_id=draw_id) if t.status == TicketStatus.ACTIVE]
        matches = {t.id: len(winning & set(t.numbers)) for t in tickets}
        jackpot_winners = sum(1 for count in matches.values() if count == PICK_COUNT)
        jackpot_share = money(Decimal(draw.jackpot) / jackpot_winners) if jackpot_winners else money(0)

        settled = []
        for ticket in tickets:
            count = matches[ticket.id]
            prize = jackpot_share if count == PICK_COUNT else PRIZE_TABLE.get(count, money(0))
            if prize > 0:
                self.ledger.append(
                    ticket.user_id,
                    TransactionType.WINNINGS,
                    prize,
                    TransactionStatus.COMPLETED,
                    is_demo=ticket.is_demo,
                    details={"game": GameType.LOTTERY.value, "draw_id": str(draw_id),
                             "ticket_id": str(ticket.id), "matched": count},
                    privileged=True,
                )
                ticket = ticket.model_copy(update={"status": TicketStatus.WON, "prize": prize})
            else:
                ticket = ticket.model_copy(update={"status": TicketStatus.LOST, "prize": money(0)})
            settled.append(self.storage.update_ticket(ticket))

        self.storage.update_draw(draw.model_copy(update={"status": DrawStatus.COMPLETED}))
        logger.info("Draw %s settled: %d tickets, %d jackpot winners", draw_id, len(settled), jackpot_winners)
        return settled

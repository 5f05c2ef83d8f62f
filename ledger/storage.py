from typing import Optional, Protocol
from uuid import UUID

from .errors import NotFoundError
from .models import (
    Account,
    Draw,
    DrawStatus,
    Referral,
    ReferralStatus,
    Reward,
    Ticket,
    Transaction,
    TransactionStatus,
    TransactionType,
    utcnow,
)


class Storage(Protocol):
    """Backend tables the services read and write.

    Transactions are append-mostly: after insert only ``status`` and
    ``details`` change.
    """

    def insert_transaction(self, record: Transaction, privileged: bool = False) -> Transaction: ...

    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]: ...

    def query_transactions(
        self,
        user_id: Optional[UUID] = None,
        is_demo: Optional[bool] = None,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]: ...

    def update_transaction_status(
        self, transaction_id: UUID, status: TransactionStatus, details: Optional[dict] = None
    ) -> Transaction: ...

    def get_account(self, user_id: UUID) -> Optional[Account]: ...

    def save_account(self, account: Account) -> Account: ...

    def insert_reward(self, reward: Reward) -> Reward: ...

    def get_reward(self, reward_id: UUID) -> Optional[Reward]: ...

    def update_reward(self, reward: Reward) -> Reward: ...

    def query_rewards(self, user_id: UUID) -> list[Reward]: ...

    def insert_referral(self, referral: Referral) -> Referral: ...

    def update_referral(self, referral: Referral) -> Referral: ...

    def query_referrals(
        self,
        referrer_id: Optional[UUID] = None,
        referred_id: Optional[UUID] = None,
        status: Optional[ReferralStatus] = None,
    ) -> list[Referral]: ...

    def insert_draw(self, draw: Draw) -> Draw: ...

    def get_draw(self, draw_id: UUID) -> Optional[Draw]: ...

    def update_draw(self, draw: Draw) -> Draw: ...

    def query_draws(self, status: Optional[DrawStatus] = None) -> list[Draw]: ...

    def insert_ticket(self, ticket: Ticket) -> Ticket: ...

    def update_ticket(self, ticket: Ticket) -> Ticket: ...

    def query_tickets(self, draw_id: Optional[UUID] = None, user_id: Optional[UUID] = None) -> list[Ticket]: ...


class InMemoryStorage:
    def __init__(self):
        self.accounts: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.rewards: dict[UUID, dict] = {}
        self.referrals: dict[UUID, dict] = {}
        self.draws: dict[UUID, dict] = {}
        self.tickets: dict[UUID, dict] = {}
        self.privileged_writes: list[UUID] = []

    # Transactions

    def insert_transaction(self, record: Transaction, privileged: bool = False) -> Transaction:
        self.transactions[record.id] = record.model_dump()
        if privileged:
            self.privileged_writes.append(record.id)
        return Transaction(**self.transactions[record.id])

    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        data = self.transactions.get(transaction_id)
        return Transaction(**data) if data else None

    def query_transactions(self, user_id=None, is_demo=None, type=None, status=None, limit=None):
        rows = [
            t for t in self.transactions.values()
            if (user_id is None or t["user_id"] == user_id)
            and (is_demo is None or t["is_demo"] == is_demo)
            and (type is None or t["type"] == type)
            and (status is None or t["status"] == status)
        ]
        rows.sort(key=lambda t: t["created_at"])
        if limit is not None:
            rows = rows[:limit]
        return [Transaction(**t) for t in rows]

    def update_transaction_status(self, transaction_id, status, details=None):
        data = self.transactions.get(transaction_id)
        if not data:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        data["status"] = status
        if details is not None:
            data["details"] = dict(details)
        data["updated_at"] = utcnow()
        return Transaction(**data)

    # Accounts

    def get_account(self, user_id):
        data = self.accounts.get(user_id)
        return Account(**data) if data else None

    def save_account(self, account):
        self.accounts[account.user_id] = account.model_dump()
        return account

    # Rewards

    def insert_reward(self, reward):
        self.rewards[reward.id] = reward.model_dump()
        return reward

    def get_reward(self, reward_id):
        data = self.rewards.get(reward_id)
        return Reward(**data) if data else None

    def update_reward(self, reward):
        if reward.id not in self.rewards:
            raise NotFoundError(f"Reward {reward.id} not found")
        self.rewards[reward.id] = reward.model_dump()
        return reward

    def query_rewards(self, user_id):
        rows = [Reward(**r) for r in self.rewards.values() if r["user_id"] == user_id]
        rows.sort(key=lambda r: r.created_at)
        return rows

    # Referrals

    def insert_referral(self, referral):
        self.referrals[referral.id] = referral.model_dump()
        return referral

    def update_referral(self, referral):
        if referral.id not in self.referrals:
            raise NotFoundError(f"Referral {referral.id} not found")
        self.referrals[referral.id] = referral.model_dump()
        return referral

    def query_referrals(self, referrer_id=None, referred_id=None, status=None):
        return [
            Referral(**r) for r in self.referrals.values()
            if (referrer_id is None or r["referrer_id"] == referrer_id)
            and (referred_id is None or r["referred_id"] == referred_id)
            and (status is None or r["status"] == status)
        ]

    # Draws and tickets

    def insert_draw(self, draw):
        self.draws[draw.id] = draw.model_dump()
        return draw

    def get_draw(self, draw_id):
        data = self.draws.get(draw_id)
        return Draw(**data) if data else None

    def update_draw(self, draw):
        if draw.id not in self.draws:
            raise NotFoundError(f"Draw {draw.id} not found")
        self.draws[draw.id] = draw.model_dump()
        return draw

    def query_draws(self, status=None):
        rows = [Draw(**d) for d in self.draws.values() if status is None or d["status"] == status]
        rows.sort(key=lambda d: d.draw_date)
        return rows

    def insert_ticket(self, ticket):
        self.tickets[ticket.id] = ticket.model_dump()
        return ticket

    def update_ticket(self, ticket):
        if ticket.id not in self.tickets:
            raise NotFoundError(f"Ticket {ticket.id} not found")
        self.tickets[ticket.id] = ticket.model_dump()
        return ticket

    def query_tickets(self, draw_id=None, user_id=None):
        rows = [
            Ticket(**t) for t in self.tickets.values()
            if (draw_id is None or t["draw_id"] == draw_id)
            and (user_id is None or t["user_id"] == user_id)
        ]
        rows.sort(key=lambda t: t.created_at)
        return rows

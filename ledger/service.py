import logging
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from .config import Settings, get_settings
from .errors import (
    AccountModeMismatchError,
    InvalidStakeError,
    InvalidStateTransitionError,
    NotFoundError,
)
from .models import (
    BalanceResponse,
    LedgerHistoryResponse,
    Transaction,
    TransactionStatus,
    TransactionType,
    money,
)
from .locks import PartitionLocks, partition_locks
from .realtime import ChangeEvent, ChangeFeed
from .storage import InMemoryStorage, Storage

logger = logging.getLogger(__name__)

CREDIT_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.WINNINGS})
DEMO_SEED_NOTE = "Initial demo funds"


def counts_toward_balance(transaction: Transaction) -> bool:
    # A withdrawal debits from the moment it is requested; nothing refunds it
    # implicitly when it is later rejected or fails.
    if transaction.type == TransactionType.WITHDRAWAL:
        return True
    return transaction.status == TransactionStatus.COMPLETED


def calculate_balance(transactions: Iterable[Transaction]) -> Decimal:
    """Derive a balance from a set of transactions of a single partition.

    deposits + winnings - purchases - withdrawals, summed as Decimal.
    """
    total = Decimal("0")
    for t in transactions:
        if not counts_toward_balance(t):
            continue
        if t.type in CREDIT_TYPES:
            total += Decimal(t.amount)
        else:
            total -= Decimal(t.amount)
    return money(total)


class LedgerService:
    def __init__(
        self,
        storage: Optional[Storage] = None,
        settings: Optional[Settings] = None,
        feed: Optional[ChangeFeed] = None,
        locks: Optional[PartitionLocks] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self.feed = feed
        self.locks = locks or partition_locks

    def lock_for(self, user_id: UUID, is_demo: bool):
        """Serialise check-then-write sequences on one partition."""
        return self.locks.lock_for(user_id, is_demo)

    def compute_balance(self, user_id: UUID, is_demo: bool) -> Decimal:
        return calculate_balance(self._partition(user_id, is_demo))

    def get_balance(self, user_id: UUID, is_demo: bool) -> BalanceResponse:
        entries = self._partition(user_id, is_demo)
        last_entry = max(entries, key=lambda e: e.created_at) if entries else None

        return BalanceResponse(
            user_id=user_id,
            is_demo=is_demo,
            currency=self.settings.currency,
            current_balance=calculate_balance(entries),
            total_entries=len(entries),
            last_transaction_at=last_entry.created_at if last_entry else None,
        )

    def get_history(self, user_id: UUID, is_demo: bool, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        entries = self._partition(user_id, is_demo)
        ordered = sorted(entries, key=lambda e: e.created_at, reverse=True)

        return LedgerHistoryResponse(
            user_id=user_id,
            is_demo=is_demo,
            entries=ordered[offset:offset + limit],
            total_count=len(ordered),
            current_balance=calculate_balance(entries),
        )

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        transaction = self.storage.get_transaction(transaction_id)
        if not transaction:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def find_by_detail(self, user_id: UUID, is_demo: bool, key: str, value) -> list[Transaction]:
        return [
            t for t in self.storage.query_transactions(user_id=user_id, is_demo=is_demo)
            if (t.details or {}).get(key) == value
        ]

    def append(
        self,
        user_id: UUID,
        type: TransactionType,
        amount,
        status: TransactionStatus,
        is_demo: bool,
        details: Optional[dict] = None,
        privileged: bool = False,
    ) -> Transaction:
        value = money(amount)
        if value <= 0:
            raise InvalidStakeError(f"Transaction amount must be positive, got {amount}")

        record = Transaction(
            user_id=user_id,
            amount=value,
            type=type,
            status=status,
            is_demo=is_demo,
            details=dict(details or {}),
        )
        saved = self.storage.insert_transaction(record, privileged=privileged)
        logger.info(
            "Recorded %s %s of %s for user %s (demo=%s)",
            status.value, type.value, value, user_id, is_demo,
        )
        self._publish(ChangeEvent.INSERT, saved)
        return saved

    def update_status(
        self, transaction_id: UUID, status: TransactionStatus, details: Optional[dict] = None
    ) -> Transaction:
        current = self.get_transaction(transaction_id)
        if current.is_terminal:
            raise InvalidStateTransitionError(
                f"Transaction {transaction_id} is already {current.status.value}"
            )
        merged = None
        if details is not None:
            merged = {**(current.details or {}), **details}

        updated = self.storage.update_transaction_status(transaction_id, status, merged)
        logger.info("Transaction %s moved %s -> %s", transaction_id, current.status.value, status.value)
        self._publish(ChangeEvent.UPDATE, updated)
        return updated

    def _partition(self, user_id: UUID, is_demo: bool) -> list[Transaction]:
        entries = self.storage.query_transactions(user_id=user_id, is_demo=is_demo)
        for entry in entries:
            if entry.is_demo != is_demo or entry.user_id != user_id:
                raise AccountModeMismatchError(
                    f"Transaction {entry.id} does not belong to partition "
                    f"(user={user_id}, demo={is_demo})"
                )

        if is_demo and not entries:
            with self.lock_for(user_id, is_demo):
                entries = self.storage.query_transactions(user_id=user_id, is_demo=is_demo)
                if not entries:
                    entries = [self._seed_demo_funds(user_id)]
        return entries

    def _seed_demo_funds(self, user_id: UUID) -> Transaction:
        logger.info("Seeding demo partition for user %s", user_id)
        return self.append(
            user_id,
            TransactionType.DEPOSIT,
            self.settings.demo_starting_balance,
            TransactionStatus.COMPLETED,
            is_demo=True,
            details={"note": DEMO_SEED_NOTE},
            privileged=True,
        )

    def _publish(self, event: ChangeEvent, transaction: Transaction) -> None:
        if self.feed is not None:
            self.feed.publish(event, transaction)

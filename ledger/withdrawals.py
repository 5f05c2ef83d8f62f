"""
Withdrawal workflow.

    none -> pending -> completed | rejected | failed

The pending row is the reservation: it debits the derived balance as soon
as it exists. Rejection does not restore funds unless
``refund_rejected_withdrawals`` is enabled, in which case a compensating
deposit is appended.
"""

import logging
import random
from typing import Optional
from uuid import UUID

from .accounts import AccountService
from .errors import (
    InsufficientFundsError,
    InvalidStakeError,
    InvalidStateTransitionError,
)
from .models import (
    WITHDRAWAL_DETAIL_FIELDS,
    Transaction,
    TransactionStatus,
    TransactionType,
    WithdrawalMethod,
    parse_amount,
    utcnow,
)
from .service import LedgerService

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Rejected by administrator"
SIMULATED_FAILURE_REASON = "Payment processor error (simulated)"


class WithdrawalService:
    def __init__(self, ledger: LedgerService, accounts: AccountService, rng: Optional[random.Random] = None):
        self.ledger = ledger
        self.accounts = accounts
        self.settings = ledger.settings
        self.rng = rng or random.Random()

    def request_withdrawal(self, amount, method: WithdrawalMethod, details: Optional[dict] = None) -> Transaction:
        user_id, is_demo = self.accounts.current_mode()

        value = parse_amount(amount)
        if value is None or value <= 0:
            raise InvalidStakeError(f"Invalid withdrawal amount: {amount!r}")
        if value < self.settings.min_withdrawal_amount:
            raise InvalidStakeError(
                f"Minimum withdrawal is {self.settings.min_withdrawal_amount}, got {value}"
            )

        try:
            method = WithdrawalMethod(method)
        except ValueError:
            raise InvalidStakeError(f"Unsupported withdrawal method: {method!r}")
        details = dict(details or {})
        required = WITHDRAWAL_DETAIL_FIELDS[method]
        if not str(details.get(required) or "").strip():
            raise InvalidStakeError(f"{method.value} withdrawals require '{required}'")

        with self.ledger.lock_for(user_id, is_demo):
            balance = self.ledger.compute_balance(user_id, is_demo)
            if value > balance:
                raise InsufficientFundsError(f"Balance {balance} is less than the requested {value}")

            # Demo funds have no settlement backend; the row is written through the
            # privileged path but follows the same state machine.
            transaction = self.ledger.append(
                user_id,
                TransactionType.WITHDRAWAL,
                value,
                TransactionStatus.PENDING,
                is_demo=is_demo,
                details={**details, "method": method.value, "requested_at": utcnow().isoformat()},
                privileged=is_demo,
            )
        logger.info("Withdrawal %s of %s requested by %s via %s", transaction.id, value, user_id, method.value)
        return transaction

    def resolve_withdrawal(self, transaction_id: UUID, approve: bool, reason: Optional[str] = None) -> Transaction:
        admin = self.accounts.require_admin()
        transaction = self._pending_withdrawal(transaction_id)

        if approve:
            resolved = self.ledger.update_status(
                transaction_id,
                TransactionStatus.COMPLETED,
                {"resolved_by": str(admin.user_id), "resolved_at": utcnow().isoformat()},
            )
        else:
            resolved = self.ledger.update_status(
                transaction_id,
                TransactionStatus.REJECTED,
                {
                    "rejection_reason": reason or DEFAULT_REJECTION_REASON,
                    "resolved_by": str(admin.user_id),
                    "resolved_at": utcnow().isoformat(),
                },
            )
            self._maybe_refund(transaction)

        logger.info("Withdrawal %s resolved as %s", transaction_id, resolved.status.value)
        return resolved

    def process_pending(self, limit: Optional[int] = None) -> list[Transaction]:
        """Simulated payment processor: settle the oldest pending withdrawals."""
        self.accounts.require_admin()
        batch = self.ledger.storage.query_transactions(
            type=TransactionType.WITHDRAWAL,
            status=TransactionStatus.PENDING,
            limit=limit or self.settings.withdrawal_processor_batch_size,
        )

        processed = []
        for withdrawal in batch:
            if self.rng.random() < self.settings.withdrawal_processor_success_rate:
                processed.append(self.ledger.update_status(withdrawal.id, TransactionStatus.COMPLETED))
            else:
                processed.append(self.ledger.update_status(
                    withdrawal.id,
                    TransactionStatus.FAILED,
                    {"failure_reason": SIMULATED_FAILURE_REASON},
                ))
                self._maybe_refund(withdrawal)
        logger.info("Processed %d pending withdrawals", len(processed))
        return processed

    def _pending_withdrawal(self, transaction_id: UUID) -> Transaction:
        transaction = self.ledger.get_transaction(transaction_id)
        if transaction.type != TransactionType.WITHDRAWAL:
            raise InvalidStateTransitionError(f"Transaction {transaction_id} is not a withdrawal")
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Withdrawal {transaction_id} is already {transaction.status.value}"
            )
        return transaction

    def _maybe_refund(self, withdrawal: Transaction) -> Optional[Transaction]:
        if not self.settings.refund_rejected_withdrawals:
            return None
        return self.ledger.append(
            withdrawal.user_id,
            TransactionType.DEPOSIT,
            withdrawal.amount,
            TransactionStatus.COMPLETED,
            is_demo=withdrawal.is_demo,
            details={"refund_of": str(withdrawal.id), "note": "Withdrawal refund"},
            privileged=True,
        )

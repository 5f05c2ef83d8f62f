import logging
import time
from typing import Callable, Optional, Protocol
from uuid import UUID

from .accounts import AccountService
from .errors import InvalidStakeError, InvalidStateTransitionError
from .models import (
    DepositMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
    parse_amount,
    utcnow,
)
from .rewards import ReferralService
from .service import LedgerService

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Card checkout, crypto address issuance or mobile-money push.

    Receives the pending deposit and returns the instructions the client
    needs (checkout url, wallet address, ...). Confirmation arrives later
    through ``PaymentService.confirm_deposit``.
    """

    def initiate(self, transaction: Transaction) -> dict: ...


class ManualGateway:
    """Gateway for deposits confirmed by an administrator."""

    def initiate(self, transaction: Transaction) -> dict:
        return {"instructions": "awaiting_confirmation"}


class PaymentService:
    def __init__(
        self,
        ledger: LedgerService,
        accounts: AccountService,
        referrals: Optional[ReferralService] = None,
        gateway: Optional[PaymentGateway] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.accounts = accounts
        self.referrals = referrals
        self.gateway = gateway or ManualGateway()
        self.settings = ledger.settings
        self.sleep = sleep

    def initiate_deposit(self, amount, method: DepositMethod = DepositMethod.CARD) -> Transaction:
        user_id, is_demo = self.accounts.current_mode()
        value = parse_amount(amount)
        if value is None or value <= 0:
            raise InvalidStakeError(f"Invalid deposit amount: {amount!r}")
        try:
            method = DepositMethod(method)
        except ValueError:
            raise InvalidStakeError(f"Unsupported deposit method: {method!r}")

        if is_demo:
            return self.ledger.append(
                user_id,
                TransactionType.DEPOSIT,
                value,
                TransactionStatus.COMPLETED,
                is_demo=True,
                details={"note": "Demo deposit", "method": method.value},
                privileged=True,
            )

        pending = self.ledger.append(
            user_id,
            TransactionType.DEPOSIT,
            value,
            TransactionStatus.PENDING,
            is_demo=False,
            details={"method": method.value, "requested_at": utcnow().isoformat()},
        )
        instructions = self.gateway.initiate(pending)
        if instructions:
            pending = self.ledger.storage.update_transaction_status(
                pending.id, TransactionStatus.PENDING, {**pending.details, **instructions}
            )
        logger.info("Deposit %s of %s handed to %s gateway", pending.id, value, method.value)
        return pending

    def confirm_deposit(self, transaction_id: UUID, approve: bool = True, reason: Optional[str] = None) -> Transaction:
        """Out-of-band confirmation from a webhook or an administrator."""
        transaction = self.ledger.get_transaction(transaction_id)
        if transaction.type != TransactionType.DEPOSIT:
            raise InvalidStateTransitionError(f"Transaction {transaction_id} is not a deposit")

        if approve:
            confirmed = self.ledger.update_status(
                transaction_id, TransactionStatus.COMPLETED, {"confirmed_at": utcnow().isoformat()}
            )
            if self.referrals is not None:
                self.referrals.on_deposit_completed(confirmed)
            return confirmed

        return self.ledger.update_status(
            transaction_id, TransactionStatus.FAILED, {"failure_reason": reason or "Payment was not confirmed"}
        )

    def poll_status(self, transaction_id: UUID, max_attempts: Optional[int] = None) -> Transaction:
        attempts = self.settings.payment_poll_max_attempts if max_attempts is None else max_attempts
        transaction = self.ledger.get_transaction(transaction_id)
        for _ in range(attempts):
            if transaction.is_terminal:
                return transaction
            self.sleep(self.settings.payment_poll_interval_seconds)
            transaction = self.ledger.get_transaction(transaction_id)

        if attempts and not transaction.is_terminal:
            logger.warning("Deposit %s still %s after %d polls", transaction_id, transaction.status.value, attempts)
        return transaction

"""
LottoWin Ledger

This package provides:
- Append-only transaction ledger with per-mode (real / demo) balances
- Account modes and demo seeding
- Withdrawal requests, admin resolution and payout processing
- Deposits through a pluggable payment gateway
- Rewards, referrals, influencer promotion and VIP cashback
"""

from .errors import LedgerServiceError, user_message
from .models import (
    AccountType,
    TransactionType,
    TransactionStatus,
    Transaction,
    Account,
    Reward,
    BalanceResponse,
)
from .service import LedgerService, calculate_balance
from .storage import InMemoryStorage

__all__ = [
    "AccountType",
    "TransactionType",
    "TransactionStatus",
    "Transaction",
    "Account",
    "Reward",
    "BalanceResponse",
    "LedgerService",
    "LedgerServiceError",
    "InMemoryStorage",
    "calculate_balance",
    "user_message",
]

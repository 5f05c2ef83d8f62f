import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, ConfigDict, field_validator


Q = Decimal("0.01")


def money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(Q, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Return ``value`` as a 2-place Decimal, or None if it is not a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Q, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_details(value: Any) -> dict:
    """Rows written by older clients may hold NULL or a JSON-encoded string."""
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError:
            return {"note": value if isinstance(value, str) else value.decode(errors="replace")}
    return value if isinstance(value, dict) else {}


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    PURCHASE = "purchase"
    WINNINGS = "winnings"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    TransactionStatus.COMPLETED,
    TransactionStatus.REJECTED,
    TransactionStatus.FAILED,
})


class AccountType(str, Enum):
    REAL = "real"
    DEMO = "demo"
    INFLUENCER = "influencer"
    DEMO_INFLUENCER = "demo_influencer"

    @property
    def is_demo(self) -> bool:
        return self in (AccountType.DEMO, AccountType.DEMO_INFLUENCER)

    @property
    def is_influencer(self) -> bool:
        return self in (AccountType.INFLUENCER, AccountType.DEMO_INFLUENCER)


class WithdrawalMethod(str, Enum):
    BANK = "bank"
    MPESA = "mpesa"
    CARD = "card"
    CRYPTO = "crypto"


# detail field each withdrawal method must carry
WITHDRAWAL_DETAIL_FIELDS = {
    WithdrawalMethod.BANK: "account_number",
    WithdrawalMethod.MPESA: "phone_number",
    WithdrawalMethod.CARD: "card_number",
    WithdrawalMethod.CRYPTO: "wallet_address",
}


class DepositMethod(str, Enum):
    CARD = "card"
    MPESA = "mpesa"
    CRYPTO = "crypto"


class RewardType(str, Enum):
    SIGNUP_BONUS = "signup_bonus"
    DEPOSIT_BONUS = "deposit_bonus"
    REFERRAL_BONUS = "referral_bonus"
    FREE_SPINS = "free_spins"
    CASHBACK = "cashback"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class DrawStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class TicketStatus(str, Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


class Transaction(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    amount: Decimal
    type: TransactionType
    status: TransactionStatus
    is_demo: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    details: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("details", mode="before")
    @classmethod
    def normalise_details(cls, value):
        return coerce_details(value)

    @field_validator("is_demo", mode="before")
    @classmethod
    def normalise_is_demo(cls, value):
        return False if value is None else value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Account(BaseModel):
    user_id: UUID
    account_type: AccountType = AccountType.REAL
    is_admin: bool = False
    email: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_demo(self) -> bool:
        return self.account_type.is_demo


class Reward(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    reward_type: RewardType
    amount: Decimal
    is_demo: bool = False
    is_claimed: bool = False
    is_expired: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    description: Optional[str] = None
    details: dict = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("details", mode="before")
    @classmethod
    def normalise_details(cls, value):
        return coerce_details(value)

    @field_validator("is_demo", "is_claimed", "is_expired", mode="before")
    @classmethod
    def normalise_flags(cls, value):
        return False if value is None else value

    def has_expired(self, now: datetime) -> bool:
        return self.is_expired or (self.expires_at is not None and self.expires_at <= now)


class Referral(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    referrer_id: UUID
    referred_id: UUID
    status: ReferralStatus = ReferralStatus.PENDING
    reward_claimed: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Draw(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    winning_numbers: list[int]
    draw_date: datetime
    jackpot: Decimal
    status: DrawStatus = DrawStatus.SCHEDULED
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)


class Ticket(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    draw_id: UUID
    numbers: list[int]
    is_demo: bool = False
    status: TicketStatus = TicketStatus.ACTIVE
    prize: Optional[Decimal] = None
    purchase_transaction_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)


class VIPTier(BaseModel):
    id: int
    name: str
    required_points: int
    cashback_percentage: Decimal
    weekly_bonus: Decimal = Decimal("0.00")
    description: Optional[str] = None


# Requests

class SwitchAccountRequest(BaseModel):
    account_type: AccountType


class DepositRequest(BaseModel):
    amount: Decimal
    method: DepositMethod = DepositMethod.CARD

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 50.00, "method": "mpesa"}
    })


class ConfirmDepositRequest(BaseModel):
    approve: bool = True
    reason: Optional[str] = None


class WithdrawalRequestIn(BaseModel):
    amount: Decimal
    method: WithdrawalMethod
    details: dict = Field(default_factory=dict)

    model_config = ConfigDict(json_schema_extra={
        "example": {"amount": 40.00, "method": "mpesa", "details": {"phone_number": "+254700000000"}}
    })


class ResolveWithdrawalRequest(BaseModel):
    approve: bool
    reason: Optional[str] = None


class ReferralRequest(BaseModel):
    referrer_user_id: UUID
    referred_user_id: UUID


class CashbackRequest(BaseModel):
    user_id: UUID
    net_loss: Decimal = Field(..., ge=0)
    points: int = Field(0, ge=0)
    is_demo: bool = False

    model_config = ConfigDict(json_schema_extra={
        "example": {"user_id": "550e8400-e29b-41d4-a716-446655440000", "net_loss": 200.00, "points": 1500}
    })


class CreateDrawRequest(BaseModel):
    winning_numbers: list[int]
    draw_date: datetime
    jackpot: Decimal


class TicketRequest(BaseModel):
    numbers: list[int]
    draw_id: Optional[UUID] = None


class BetRequest(BaseModel):
    stake: Decimal
    round_id: Optional[UUID] = None


class DiceBetRequest(BetRequest):
    target: int = Field(..., ge=1, le=6)
    direction: str = Field(..., pattern="^(higher|lower)$")

    model_config = ConfigDict(json_schema_extra={
        "example": {"stake": 10.00, "target": 4, "direction": "higher"}
    })


class CrashBetRequest(BetRequest):
    auto_cash_out: Decimal


# Responses

class BalanceResponse(BaseModel):
    user_id: UUID
    is_demo: bool
    currency: str
    current_balance: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    is_demo: bool
    entries: list[Transaction]
    total_count: int
    current_balance: Decimal


class ClaimResponse(BaseModel):
    reward: Reward
    transaction: Transaction
    message: str

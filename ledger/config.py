"""
Application settings.

Values are read from the environment (``LOTTO_`` prefix) or an optional
``.env`` file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOTTO_", env_file=".env", extra="ignore")

    currency: str = "USD"
    log_level: str = "INFO"

    # Ledger
    demo_starting_balance: Decimal = Decimal("100.00")

    # Games
    house_edge: Decimal = Decimal("0.05")
    scratch_card_price: Decimal = Decimal("5.00")
    scratch_force_win_probability: float = 0.20
    crash_tick_seconds: float = 0.1
    ticket_price: Decimal = Decimal("5.00")

    # Withdrawals
    min_withdrawal_amount: Decimal = Decimal("10.00")
    refund_rejected_withdrawals: bool = False
    withdrawal_processor_success_rate: float = 0.9
    withdrawal_processor_batch_size: int = 10

    # Referrals / rewards
    referral_bonus_amount: Decimal = Decimal("10.00")
    referral_deposit_percent: Decimal = Decimal("0.05")
    influencer_referral_threshold: int = 100
    influencer_bonus_amount: Decimal = Decimal("500.00")
    signup_bonus_amount: Decimal = Decimal("100.00")
    signup_bonus_ttl_days: int = 7

    # Payments
    payment_poll_interval_seconds: float = 15.0
    payment_poll_max_attempts: int = 40

    # Supabase (optional; in-memory storage is used when unset)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_service_key: Optional[str] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()

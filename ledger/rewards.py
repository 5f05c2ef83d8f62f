"""
Referral and reward accrual.

Rewards are granted into a partition (real or demo) and can only be claimed
while the account is in that mode. Claiming converts a reward into exactly
one completed deposit.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .accounts import AccountService
from .errors import (
    AccountModeMismatchError,
    AlreadyClaimedError,
    InvalidStateTransitionError,
    LedgerServiceError,
    NotFoundError,
    RewardExpiredError,
)
from .models import (
    ClaimResponse,
    Referral,
    ReferralStatus,
    Reward,
    RewardType,
    Transaction,
    TransactionStatus,
    TransactionType,
    money,
    utcnow,
)
from .service import LedgerService

logger = logging.getLogger(__name__)


class RewardService:
    def __init__(self, ledger: LedgerService, accounts: AccountService):
        self.ledger = ledger
        self.accounts = accounts
        self.storage = ledger.storage
        self.settings = ledger.settings

    def grant(
        self,
        user_id: UUID,
        reward_type: RewardType,
        amount,
        is_demo: bool = False,
        description: Optional[str] = None,
        details: Optional[dict] = None,
        expires_at: Optional[datetime] = None,
    ) -> Reward:
        reward = Reward(
            user_id=user_id,
            reward_type=reward_type,
            amount=money(amount),
            is_demo=is_demo,
            description=description,
            details=dict(details or {}),
            expires_at=expires_at,
        )
        self.storage.insert_reward(reward)
        logger.info("Granted %s of %s to user %s", reward_type.value, reward.amount, user_id)
        return reward

    def grant_signup_bonus(self, user_id: UUID) -> Reward:
        with self.ledger.lock_for(user_id, False):
            for reward in self.storage.query_rewards(user_id):
                if reward.reward_type == RewardType.SIGNUP_BONUS:
                    return reward
            return self.grant(
                user_id,
                RewardType.SIGNUP_BONUS,
                self.settings.signup_bonus_amount,
                description="Welcome Bonus - New User",
                expires_at=utcnow() + timedelta(days=self.settings.signup_bonus_ttl_days),
            )

    def list_rewards(self, include_claimed: bool = False) -> list[Reward]:
        user_id = self.accounts.current_account().user_id
        self.expire_rewards(user_id)
        rewards = self.storage.query_rewards(user_id)
        if include_claimed:
            return rewards
        return [r for r in rewards if not r.is_claimed and not r.is_expired]

    def claim_reward(self, reward_id: UUID, now: Optional[datetime] = None) -> ClaimResponse:
        user_id, is_demo = self.accounts.current_mode()
        now = now or utcnow()

        with self.ledger.lock_for(user_id, is_demo):
            reward = self.storage.get_reward(reward_id)
            if not reward or reward.user_id != user_id:
                raise NotFoundError(f"Reward {reward_id} not found")
            if reward.is_claimed:
                raise AlreadyClaimedError(f"Reward {reward_id} was already claimed")
            if reward.has_expired(now):
                if not reward.is_expired:
                    self.storage.update_reward(reward.model_copy(update={"is_expired": True}))
                raise RewardExpiredError(f"Reward {reward_id} expired")
            if reward.is_demo != is_demo:
                raise AccountModeMismatchError(
                    f"Reward {reward_id} belongs to the {'demo' if reward.is_demo else 'real'} account"
                )

            claimed = self.storage.update_reward(
                reward.model_copy(update={"is_claimed": True, "claimed_at": now})
            )
            try:
                transaction = self.ledger.append(
                    user_id,
                    TransactionType.DEPOSIT,
                    reward.amount,
                    TransactionStatus.COMPLETED,
                    is_demo=is_demo,
                    details={
                        "note": f"Claimed {reward.description or reward.reward_type.value}",
                        "reward_id": str(reward.id),
                    },
                )
            except LedgerServiceError:
                self.storage.update_reward(reward)
                raise

        self._mark_referral_claimed(claimed)
        return ClaimResponse(reward=claimed, transaction=transaction, message="Reward claimed successfully")

    def expire_rewards(self, user_id: UUID, now: Optional[datetime] = None) -> list[Reward]:
        """Flag unclaimed rewards past their expiry. Returns the newly expired ones."""
        now = now or utcnow()
        expired = []
        for reward in self.storage.query_rewards(user_id):
            if reward.is_claimed or reward.is_expired:
                continue
            if reward.has_expired(now):
                expired.append(self.storage.update_reward(reward.model_copy(update={"is_expired": True})))
        return expired

    def _mark_referral_claimed(self, reward: Reward) -> None:
        referral_id = reward.details.get("referral_id")
        if not referral_id or reward.details.get("kind") != "referral":
            return
        for referral in self.storage.query_referrals(referrer_id=reward.user_id):
            if str(referral.id) == referral_id:
                self.storage.update_referral(referral.model_copy(update={"reward_claimed": True}))


class ReferralService:
    def __init__(self, rewards: RewardService, accounts: AccountService):
        self.rewards = rewards
        self.accounts = accounts
        self.storage = rewards.storage
        self.settings = rewards.settings

    def register_referral(self, referrer_id: UUID, referred_id: UUID) -> Referral:
        if referrer_id == referred_id:
            raise InvalidStateTransitionError("Users cannot refer themselves")
        if self.storage.query_referrals(referred_id=referred_id):
            raise InvalidStateTransitionError(f"User {referred_id} was already referred")

        referral = self.storage.insert_referral(Referral(referrer_id=referrer_id, referred_id=referred_id))
        logger.info("Referral %s registered: %s -> %s", referral.id, referrer_id, referred_id)
        return referral

    def completed_count(self, referrer_id: UUID) -> int:
        return len(self.storage.query_referrals(referrer_id=referrer_id, status=ReferralStatus.COMPLETED))

    def on_deposit_completed(self, transaction: Transaction) -> list[Reward]:
        """Accrue referral rewards for a completed real-money deposit."""
        if (
            transaction.is_demo
            or transaction.type != TransactionType.DEPOSIT
            or transaction.status != TransactionStatus.COMPLETED
        ):
            return []

        referrals = self.storage.query_referrals(referred_id=transaction.user_id)
        if not referrals:
            return []
        referral = referrals[0]

        if self._already_accrued(referral.referrer_id, transaction.id):
            return []

        if referral.status == ReferralStatus.PENDING:
            return self._complete(referral, transaction)

        share = money(Decimal(transaction.amount) * self.settings.referral_deposit_percent)
        if share <= 0:
            return []
        return [self.rewards.grant(
            referral.referrer_id,
            RewardType.DEPOSIT_BONUS,
            share,
            description=f"Referral deposit share from {transaction.user_id}",
            details={"kind": "deposit_share", "referral_id": str(referral.id),
                     "source_transaction_id": str(transaction.id)},
        )]

    def _complete(self, referral: Referral, transaction: Transaction) -> list[Reward]:
        self.storage.update_referral(referral.model_copy(update={
            "status": ReferralStatus.COMPLETED,
            "completed_at": utcnow(),
        }))
        granted = [self.rewards.grant(
            referral.referrer_id,
            RewardType.REFERRAL_BONUS,
            self.settings.referral_bonus_amount,
            description="Referral Bonus",
            details={"kind": "referral", "referral_id": str(referral.id),
                     "source_transaction_id": str(transaction.id)},
        )]
        logger.info("Referral %s completed by deposit %s", referral.id, transaction.id)

        bonus = self._check_influencer(referral.referrer_id)
        if bonus:
            granted.append(bonus)
        return granted

    def _check_influencer(self, referrer_id: UUID) -> Optional[Reward]:
        if self.completed_count(referrer_id) < self.settings.influencer_referral_threshold:
            return None
        if self.accounts.promote_to_influencer(referrer_id) is None:
            return None
        return self.rewards.grant(
            referrer_id,
            RewardType.REFERRAL_BONUS,
            self.settings.influencer_bonus_amount,
            description="Influencer Bonus",
            details={"kind": "influencer"},
        )

    def _already_accrued(self, referrer_id: UUID, transaction_id: UUID) -> bool:
        source = str(transaction_id)
        return any(
            r.details.get("source_transaction_id") == source
            for r in self.storage.query_rewards(referrer_id)
        )

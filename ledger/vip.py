from decimal import Decimal
from typing import Optional
from uuid import UUID

from .models import Reward, RewardType, VIPTier, money
from .rewards import RewardService

DEFAULT_TIERS = [
    VIPTier(id=1, name="Bronze", required_points=0, cashback_percentage=Decimal("0")),
    VIPTier(id=2, name="Silver", required_points=1000, cashback_percentage=Decimal("2"),
            weekly_bonus=Decimal("5.00")),
    VIPTier(id=3, name="Gold", required_points=5000, cashback_percentage=Decimal("5"),
            weekly_bonus=Decimal("25.00")),
    VIPTier(id=4, name="Platinum", required_points=20000, cashback_percentage=Decimal("10"),
            weekly_bonus=Decimal("100.00")),
]


class VIPService:
    def __init__(self, rewards: RewardService, tiers: Optional[list[VIPTier]] = None):
        self.rewards = rewards
        self.tiers = sorted(tiers or DEFAULT_TIERS, key=lambda t: t.required_points)

    def tier_for_points(self, points: int) -> VIPTier:
        current = self.tiers[0]
        for tier in self.tiers:
            if points >= tier.required_points:
                current = tier
        return current

    def next_tier(self, points: int) -> Optional[VIPTier]:
        for tier in self.tiers:
            if tier.required_points > points:
                return tier
        return None

    def progress(self, points: int) -> Decimal:
        """Percentage of the way from the current tier to the next one."""
        current = self.tier_for_points(points)
        upcoming = self.next_tier(points)
        if upcoming is None:
            return Decimal("100")
        span = upcoming.required_points - current.required_points
        done = points - current.required_points
        return money(Decimal(done) * 100 / Decimal(span))

    def issue_cashback(self, user_id: UUID, net_loss, points: int, is_demo: bool = False) -> Optional[Reward]:
        tier = self.tier_for_points(points)
        amount = money(Decimal(str(net_loss)) * tier.cashback_percentage / 100)
        if amount <= 0:
            return None
        return self.rewards.grant(
            user_id,
            RewardType.CASHBACK,
            amount,
            is_demo=is_demo,
            description=f"{tier.name} cashback",
            details={"tier_id": tier.id, "net_loss": str(money(net_loss))},
        )

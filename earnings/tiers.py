"""Subscription tiers and the reward/commission tables keyed by them."""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .models import SubscriptionStatus, Tier, UserAccount

# Share of a sale's commission pool that goes to the promoting user
EARNING_RATES: dict[Tier, Decimal] = {
    Tier.FREE: Decimal("0.20"),
    Tier.SILVER: Decimal("0.30"),
    Tier.GOLD: Decimal("0.40"),
    Tier.DIAMOND: Decimal("0.50"),
    Tier.PLATINUM: Decimal("0.60"),
}


@dataclass(frozen=True)
class TierBenefit:
    daily_game_limit: int
    reward_per_game: Decimal


TIER_BENEFITS: dict[Tier, TierBenefit] = {
    Tier.SILVER: TierBenefit(daily_game_limit=10, reward_per_game=Decimal("15")),
    Tier.GOLD: TierBenefit(daily_game_limit=12, reward_per_game=Decimal("20")),
    Tier.DIAMOND: TierBenefit(daily_game_limit=20, reward_per_game=Decimal("25")),
    Tier.PLATINUM: TierBenefit(daily_game_limit=20, reward_per_game=Decimal("35")),
}

FREE_GAME_BENEFIT = TierBenefit(daily_game_limit=3, reward_per_game=Decimal("5"))

DAILY_LOGIN_BONUS = Decimal("20")
SIGNUP_BONUS = Decimal("20")
REFERRAL_BONUS = Decimal("50")
SUBSCRIPTION_DAYS = 30


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def has_active_subscription(user: UserAccount, now: Optional[datetime] = None) -> bool:
    subscription = user.subscription
    if subscription is None or subscription.tier == Tier.FREE:
        return False
    if subscription.status != SubscriptionStatus.ACTIVE:
        return False
    if subscription.expires_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    return _aware(subscription.expires_at) > _aware(now)


def effective_tier(user: UserAccount, now: Optional[datetime] = None) -> Tier:
    if has_active_subscription(user, now):
        return user.subscription.tier
    return Tier.FREE


def earning_rate(tier: Tier) -> Decimal:
    return EARNING_RATES.get(tier, EARNING_RATES[Tier.FREE])


def paid_game_benefit(tier: Tier) -> Optional[TierBenefit]:
    return TIER_BENEFITS.get(tier)

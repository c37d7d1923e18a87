"""
Earnings Ledger for the TaskPlay play-to-earn app

This module provides:
- Three balance categories debited in a fixed order: referral → affiliate → naira
- Withdrawal lifecycle: pending → approved / rejected (with refund)
- Tier-based affiliate commissions
- Capped, idempotent game and task rewards plus a daily login bonus
"""

from .models import (
    Tier,
    SubscriptionStatus,
    WithdrawalStatus,
    UserAccount,
    WithdrawalRequest,
)
from .service import EarningsService
from .rewards import RewardService
from .catalog import CatalogService

__all__ = [
    "Tier",
    "SubscriptionStatus",
    "WithdrawalStatus",
    "UserAccount",
    "WithdrawalRequest",
    "EarningsService",
    "RewardService",
    "CatalogService",
]

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from .models import Tier


DEFAULT_PLAN_AMOUNTS = {
    Tier.SILVER: 4000,
    Tier.GOLD: 7000,
    Tier.DIAMOND: 12000,
    Tier.PLATINUM: 20000,
}

MIN_AUTH_SECRET_BYTES = 32


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"{name} must be a finite, non-negative number, got {raw!r}")
    return value


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"{name} must be set")
    return value


@dataclass
class Settings:
    minimum_withdrawal_amount: Decimal = Decimal("1000")
    withdrawal_fee_rate: Decimal = Decimal("0.05")

    # No default: tokens cannot be issued or verified until a secret is configured
    auth_secret: Optional[str] = None
    auth_algorithm: str = "HS256"

    paystack_secret_key: Optional[str] = None
    paystack_base_url: str = "https://api.paystack.co"
    # plan code -> tier
    plan_tiers: dict[str, Tier] = field(default_factory=dict)
    # tier -> price in naira
    plan_amounts: dict[Tier, int] = field(default_factory=lambda: dict(DEFAULT_PLAN_AMOUNTS))

    resend_api_key: Optional[str] = None
    email_from: str = "TaskPlay <no-reply@taskplay.app>"
    admin_email: Optional[str] = None
    app_url: str = "http://localhost:3000"

    def __post_init__(self):
        if self.withdrawal_fee_rate >= 1:
            raise ValueError("Withdrawal fee rate must be below 1")
        if self.minimum_withdrawal_amount <= 0:
            raise ValueError("Minimum withdrawal amount must be positive")
        if self.auth_secret is not None and len(self.auth_secret.encode()) < MIN_AUTH_SECRET_BYTES:
            raise ValueError(f"Auth secret must be at least {MIN_AUTH_SECRET_BYTES} bytes")

    @classmethod
    def from_env(cls) -> "Settings":
        plan_tiers = {}
        plan_amounts = dict(DEFAULT_PLAN_AMOUNTS)
        for tier in DEFAULT_PLAN_AMOUNTS:
            code = os.getenv(f"PAYSTACK_{tier.name}_PLAN")
            if code:
                plan_tiers[code] = tier
            amount = os.getenv(f"PAYSTACK_{tier.name}_AMOUNT")
            if amount:
                plan_amounts[tier] = int(amount)

        return cls(
            minimum_withdrawal_amount=_decimal_env("MINIMUM_WITHDRAWAL_AMOUNT", "1000"),
            withdrawal_fee_rate=_decimal_env("WITHDRAWAL_FEE_RATE", "0.05"),
            auth_secret=_required_env("AUTH_SECRET"),
            auth_algorithm=os.getenv("AUTH_ALGORITHM", "HS256"),
            paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY"),
            paystack_base_url=os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co"),
            plan_tiers=plan_tiers,
            plan_amounts=plan_amounts,
            resend_api_key=os.getenv("RESEND_API_KEY"),
            email_from=os.getenv("EMAIL_FROM", "TaskPlay <no-reply@taskplay.app>"),
            admin_email=os.getenv("ADMIN_EMAIL"),
            app_url=os.getenv("APP_URL", "http://localhost:3000"),
        )

    def tier_for_plan(self, plan_code: str) -> Optional[Tier]:
        return self.plan_tiers.get(plan_code)


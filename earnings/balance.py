"""
Balance rules for user accounts.

A user's withdrawable money is split across three categories. Credits always
land in exactly one category; debits drain referral earnings first, then
affiliate earnings, then the general naira balance.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import InsufficientBalance, InvalidAmount
from .models import UserAccount
from .store import Increment

ZERO = Decimal("0")
CENT = Decimal("0.01")


class BalanceCategory(str, Enum):
    NAIRA = "naira_balance"
    REFERRAL = "referral_earnings"
    AFFILIATE = "affiliate_earnings"


DEBIT_ORDER = (BalanceCategory.REFERRAL, BalanceCategory.AFFILIATE, BalanceCategory.NAIRA)


def to_amount(value: Any, field: str = "amount") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Invalid {field}: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid {field}: {value!r}")
    if not amount.is_finite():
        raise InvalidAmount(f"Invalid {field}: must be a finite number")
    return amount


def require_positive_amount(value: Any, field: str = "amount") -> Decimal:
    amount = to_amount(value, field)
    if amount <= ZERO:
        raise InvalidAmount(f"Invalid {field}: must be greater than zero")
    return amount


def category_balance(user: UserAccount, category: BalanceCategory) -> Decimal:
    return getattr(user, category.value) or ZERO


def total_withdrawable(user: UserAccount) -> Decimal:
    return (
        category_balance(user, BalanceCategory.NAIRA)
        + category_balance(user, BalanceCategory.REFERRAL)
        + category_balance(user, BalanceCategory.AFFILIATE)
    )


def plan_debit(user: UserAccount, amount: Decimal) -> dict[BalanceCategory, Decimal]:
    """
    Split a debit across the balance categories in DEBIT_ORDER.

    Returns only the categories that are actually touched. Raises
    InsufficientBalance if the user cannot cover the full amount.
    """
    amount = require_positive_amount(amount)
    available = total_withdrawable(user)
    if amount > available:
        raise InsufficientBalance(f"Insufficient balance: requested {amount}, available {available}")

    remaining = amount
    plan: dict[BalanceCategory, Decimal] = {}
    for category in DEBIT_ORDER:
        if remaining <= ZERO:
            break
        deduction = min(remaining, max(category_balance(user, category), ZERO))
        if deduction > ZERO:
            plan[category] = deduction
            remaining -= deduction
    return plan


def debit_updates(plan: dict[BalanceCategory, Decimal]) -> dict[str, Increment]:
    return {category.value: Increment(-deduction) for category, deduction in plan.items()}


def credit_update(category: BalanceCategory, amount: Decimal) -> dict[str, Increment]:
    return {category.value: Increment(require_positive_amount(amount))}


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)

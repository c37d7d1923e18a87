import secrets
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from .balance import (
    ZERO,
    BalanceCategory,
    credit_update,
    debit_updates,
    plan_debit,
    quantize_money,
    require_positive_amount,
    to_amount,
    total_withdrawable,
)
from .config import Settings
from .errors import (
    AlreadyProcessed,
    BelowMinimum,
    ConflictError,
    DuplicatePendingRequest,
    EarningsServiceError,
    InvalidAmount,
    InvalidProductConfiguration,
    InvalidStatus,
    NotFoundError,
    PayoutDetailsMissing,
    ReasonRequired,
    ValidationError,
)
from .logging import get_logger
from .models import (
    BalanceSummary,
    LoginBonusResponse,
    PayoutDetails,
    SaleResponse,
    Tier,
    UserAccount,
    UserListItem,
    WithdrawalRequest,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .notifications import Notifier
from .store import Increment, InMemoryDocumentStore, Transaction
from .tiers import DAILY_LOGIN_BONUS, REFERRAL_BONUS, SIGNUP_BONUS, earning_rate, effective_tier

logger = get_logger(__name__)

USERS = "users"
WITHDRAWALS = "withdrawalRequests"
PRODUCTS = "affiliateProducts"

REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERRAL_CODE_LENGTH = 8
HISTORY_LIMIT = 10


def local_now() -> datetime:
    return datetime.now().astimezone()


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    # No I, O, 0 or 1 so codes can be read back without confusion
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class CommissionBreakdown:
    commission_rate: Decimal
    earning_percentage: Decimal
    total_commission: Decimal
    user_portion: Decimal


def parse_base_commission(value: Any) -> Decimal:
    """Base commission is a percentage rate of the sale amount; missing means 0."""
    try:
        base = to_amount(value if value is not None else 0, "base commission")
    except InvalidAmount:
        raise InvalidProductConfiguration(f"Invalid base commission {value!r}: it must be a number.")
    if base < ZERO:
        raise InvalidProductConfiguration("Base commission cannot be negative.")
    return base


def calculate_commission(sale_amount: Decimal, base_commission: Any, tier: Tier) -> CommissionBreakdown:
    """
    Work out a promoter's share of a sale.

    `base_commission` is a percentage of the sale (10 means 10%); the
    promoter keeps the tier's earning percentage of that commission.
    """
    sale_amount = require_positive_amount(sale_amount, "sale amount")
    commission_rate = parse_base_commission(base_commission) / 100
    percentage = earning_rate(tier)
    total_commission = sale_amount * commission_rate
    return CommissionBreakdown(
        commission_rate=commission_rate,
        earning_percentage=percentage,
        total_commission=quantize_money(total_commission),
        user_portion=quantize_money(total_commission * percentage),
    )


def load_user(reader: Union[Transaction, InMemoryDocumentStore], user_id: str) -> UserAccount:
    doc = reader.get(USERS, user_id)
    if doc is None:
        raise NotFoundError(f"User {user_id} not found")
    return UserAccount.model_validate(doc)


class EarningsService:
    def __init__(
        self,
        store: Optional[InMemoryDocumentStore] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store or InMemoryDocumentStore()
        self.settings = settings or Settings()
        self.notifier = notifier
        self._clock = clock or local_now

    def _now(self) -> datetime:
        return self._clock()

    def _today(self) -> date:
        return self._clock().date()

    # ==================== USERS ====================

    def register_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> UserAccount:
        def work(txn: Transaction) -> tuple[UserAccount, bool]:
            existing = txn.get(USERS, user_id)
            if existing is not None:
                return UserAccount.model_validate(existing), False

            code = generate_referral_code()
            while txn.query(USERS, {"referral_code": code}, limit=1):
                code = generate_referral_code()

            user = UserAccount(
                id=user_id,
                email=email,
                display_name=display_name,
                naira_balance=SIGNUP_BONUS,
                referral_code=code,
                last_login_date=self._today(),
                consecutive_login_days=1,
                created_at=self._now(),
            )
            txn.create(USERS, user.model_dump(), doc_id=user_id)
            return user, True

        # A concurrent registration for the same uid makes this retry and find the existing user
        user, created = self.store.run_transaction(work)
        if not created:
            return user
        logger.info("Registered user %s with signup bonus %s", user_id, SIGNUP_BONUS)

        if referral_code:
            try:
                self.apply_referral(referral_code, user_id)
            except EarningsServiceError as e:
                # A bad code must not block signup
                logger.warning("Could not apply referral code for %s: %s", user_id, e)
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> UserAccount:
        doc = self.store.get(USERS, user_id)
        if doc is None:
            raise NotFoundError(f"User {user_id} not found")
        return UserAccount.model_validate(doc)

    def list_users(self) -> list[UserListItem]:
        docs = self.store.query(USERS, order_by="email")
        return [UserListItem(uid=d["id"], email=d.get("email"), display_name=d.get("display_name")) for d in docs]

    def balance_summary(self, user_id: str) -> BalanceSummary:
        user = self.get_user(user_id)
        return BalanceSummary(
            user_id=user.id,
            naira_balance=user.naira_balance,
            referral_earnings=user.referral_earnings,
            affiliate_earnings=user.affiliate_earnings,
            total_withdrawable=total_withdrawable(user),
            tier=effective_tier(user, self._now()),
            consecutive_login_days=user.consecutive_login_days,
        )

    def set_payout_details(self, user_id: str, details: PayoutDetails) -> UserAccount:
        def work(txn: Transaction) -> None:
            load_user(txn, user_id)
            txn.update(USERS, user_id, {"payout_details": details.model_dump()})

        self.store.run_transaction(work)
        logger.info("Updated payout details for user %s", user_id)
        return self.get_user(user_id)

    # ==================== WITHDRAWALS ====================

    def calculate_fee(self, gross_amount: Decimal) -> tuple[Decimal, Decimal]:
        fee = quantize_money(gross_amount * self.settings.withdrawal_fee_rate)
        return fee, gross_amount - fee

    def request_withdrawal(self, user_id: str, amount: Any) -> WithdrawalResponse:
        gross_amount = require_positive_amount(amount)
        minimum = self.settings.minimum_withdrawal_amount
        if gross_amount < minimum:
            raise BelowMinimum(f"Minimum withdrawal amount is ₦{minimum}.")
        fee, net_amount = self.calculate_fee(gross_amount)

        def work(txn: Transaction) -> WithdrawalRequest:
            user = load_user(txn, user_id)
            if user.payout_details is None:
                raise PayoutDetailsMissing(
                    "Payout details are not set up. Please add your bank account information in your profile."
                )

            plan = plan_debit(user, gross_amount)

            pending = txn.query(WITHDRAWALS, {"user_id": user_id, "status": WithdrawalStatus.PENDING}, limit=1)
            if pending:
                raise DuplicatePendingRequest(
                    "You already have a pending withdrawal request. Please wait for it to be processed."
                )

            request = WithdrawalRequest(
                id=uuid4().hex,
                user_id=user_id,
                user_email=user.email,
                display_name=user.display_name,
                gross_amount=gross_amount,
                fee=fee,
                net_amount=net_amount,
                status=WithdrawalStatus.PENDING,
                payout_details=user.payout_details,
                requested_at=self._now(),
            )
            txn.create(WITHDRAWALS, request.model_dump(), doc_id=request.id)
            txn.update(USERS, user_id, debit_updates(plan))
            return request

        request = self.store.run_transaction(work)
        logger.info(
            "Withdrawal %s created for user %s: gross=%s fee=%s net=%s",
            request.id, user_id, gross_amount, fee, net_amount,
        )

        self._notify("withdrawal_requested", request)
        return WithdrawalResponse(request=request, message="Withdrawal request submitted successfully.")

    def process_withdrawal(self, request_id: str, status: str, rejection_reason: Optional[str] = None) -> WithdrawalResponse:
        if status == WithdrawalStatus.APPROVED.value:
            return self.approve_withdrawal(request_id)
        if status == WithdrawalStatus.REJECTED.value:
            return self.reject_withdrawal(request_id, rejection_reason)
        raise InvalidStatus("Invalid status provided.")

    def approve_withdrawal(self, request_id: str) -> WithdrawalResponse:
        def work(txn: Transaction) -> WithdrawalRequest:
            request = self._load_pending(txn, request_id)
            changes = {"status": WithdrawalStatus.APPROVED, "processed_at": self._now()}
            txn.update(WITHDRAWALS, request_id, changes)
            return request.model_copy(update=changes)

        request = self.store.run_transaction(work)
        logger.info("Withdrawal %s approved (net %s)", request_id, request.net_amount)
        self._notify("withdrawal_processed", request)
        return WithdrawalResponse(request=request, message="Request successfully approved.")

    def reject_withdrawal(self, request_id: str, rejection_reason: Optional[str]) -> WithdrawalResponse:
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ReasonRequired("Rejection reason is required for rejected status.")

        def work(txn: Transaction) -> WithdrawalRequest:
            request = self._load_pending(txn, request_id)
            load_user(txn, request.user_id)

            changes = {
                "status": WithdrawalStatus.REJECTED,
                "processed_at": self._now(),
                "rejection_reason": reason,
            }
            txn.update(WITHDRAWALS, request_id, changes)
            # Full gross amount goes back to the general balance, whatever it was drawn from
            txn.update(USERS, request.user_id, credit_update(BalanceCategory.NAIRA, request.gross_amount))
            return request.model_copy(update=changes)

        request = self.store.run_transaction(work)
        logger.info("Withdrawal %s rejected, refunded %s to user %s", request_id, request.gross_amount, request.user_id)
        self._notify("withdrawal_processed", request)
        return WithdrawalResponse(request=request, message="Request successfully rejected.")

    def get_withdrawal(self, request_id: str) -> WithdrawalRequest:
        doc = self.store.get(WITHDRAWALS, request_id)
        if doc is None:
            raise NotFoundError(f"Withdrawal request {request_id} not found")
        return WithdrawalRequest.model_validate(doc)

    def list_withdrawals(self, status: Optional[str] = None, user_id: Optional[str] = None, limit: Optional[int] = None) -> list[WithdrawalRequest]:
        filters: dict[str, Any] = {}
        if status:
            try:
                filters["status"] = WithdrawalStatus(status)
            except ValueError:
                raise InvalidStatus(f"Unknown withdrawal status {status!r}")
        if user_id:
            filters["user_id"] = user_id

        docs = self.store.query(WITHDRAWALS, filters, order_by="requested_at", descending=True, limit=limit)
        return [WithdrawalRequest.model_validate(d) for d in docs]

    def withdrawal_history(self, user_id: str, status: Optional[str] = None, limit: int = HISTORY_LIMIT) -> list[WithdrawalRequest]:
        return self.list_withdrawals(status=status, user_id=user_id, limit=limit)

    def _load_pending(self, txn: Transaction, request_id: str) -> WithdrawalRequest:
        doc = txn.get(WITHDRAWALS, request_id)
        if doc is None:
            raise NotFoundError(f"Withdrawal request {request_id} not found")
        request = WithdrawalRequest.model_validate(doc)
        if not request.can_process():
            raise AlreadyProcessed(f"Request is already {request.status.value}.")
        return request

    def _notify(self, event: str, request: WithdrawalRequest) -> None:
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, event)(request)
        except Exception:
            logger.error("Failed to send notifications for withdrawal %s", request.id, exc_info=True)

    # ==================== AFFILIATE SALES ====================

    def record_sale(self, user_id: str, product_id: str, sale_amount: Any) -> SaleResponse:
        sale_amount = require_positive_amount(sale_amount, "sale amount")

        def work(txn: Transaction) -> tuple[Tier, CommissionBreakdown]:
            user_doc, product_doc = txn.get_all((USERS, user_id), (PRODUCTS, product_id))
            if user_doc is None:
                raise NotFoundError(f"User with ID {user_id} not found.")
            if product_doc is None:
                raise NotFoundError(f"Product with ID {product_id} not found.")

            user = UserAccount.model_validate(user_doc)
            tier = effective_tier(user, self._now())
            breakdown = calculate_commission(sale_amount, product_doc.get("base_commission"), tier)

            txn.update(PRODUCTS, product_id, {
                "total_sales": Increment(1),
                "total_earnings": Increment(breakdown.user_portion),
            })
            if breakdown.user_portion > ZERO:
                txn.update(USERS, user_id, credit_update(BalanceCategory.AFFILIATE, breakdown.user_portion))
            return tier, breakdown

        tier, breakdown = self.store.run_transaction(work)
        logger.info(
            "Recorded sale of %s on product %s for user %s (%s tier): commission=%s user_portion=%s",
            sale_amount, product_id, user_id, tier.value, breakdown.total_commission, breakdown.user_portion,
        )
        return SaleResponse(
            user_id=user_id,
            product_id=product_id,
            tier=tier,
            commission_rate=breakdown.commission_rate,
            earning_percentage=breakdown.earning_percentage,
            total_commission=breakdown.total_commission,
            user_portion=breakdown.user_portion,
            message="Sale recorded successfully",
        )

    # ==================== REFERRALS ====================

    def apply_referral(self, referral_code: str, new_user_id: str) -> UserAccount:
        code = (referral_code or "").strip().upper()
        if not code:
            raise ValidationError("Referral code is required.")

        def work(txn: Transaction) -> str:
            matches = txn.query(USERS, {"referral_code": code}, limit=1)
            if not matches:
                raise NotFoundError("Invalid referral code.")
            referrer = UserAccount.model_validate(matches[0])
            if referrer.id == new_user_id:
                raise ValidationError("You cannot use your own referral code.")

            new_user = load_user(txn, new_user_id)
            if new_user.referred_by_uid:
                raise ConflictError("A referral code has already been applied to this account.")

            txn.update(USERS, referrer.id, {
                **credit_update(BalanceCategory.REFERRAL, REFERRAL_BONUS),
                "total_referrals": Increment(1),
                "referrals": referrer.referrals + [new_user_id],
            })
            txn.update(USERS, new_user_id, {"referred_by_uid": referrer.id, "referred_by": code})
            return referrer.id

        referrer_id = self.store.run_transaction(work)
        logger.info("User %s referred by %s, credited %s", new_user_id, referrer_id, REFERRAL_BONUS)
        return self.get_user(new_user_id)

    # ==================== DAILY LOGIN BONUS ====================

    def claim_daily_login_bonus(self, user_id: str) -> LoginBonusResponse:
        today = self._today()

        def work(txn: Transaction) -> LoginBonusResponse:
            user = load_user(txn, user_id)
            last = user.last_login_date

            if last is None:
                # First session: signup already paid today's bonus
                txn.update(USERS, user_id, {"last_login_date": today, "consecutive_login_days": 1})
                return LoginBonusResponse(
                    credited=False, amount=ZERO, consecutive_login_days=1, message="Login streak started."
                )

            if last >= today:
                return LoginBonusResponse(
                    credited=False,
                    amount=ZERO,
                    consecutive_login_days=user.consecutive_login_days,
                    message="Daily bonus already claimed today.",
                )

            streak = user.consecutive_login_days + 1 if last == today - timedelta(days=1) else 1
            txn.update(USERS, user_id, {
                "last_login_date": today,
                "consecutive_login_days": streak,
                **credit_update(BalanceCategory.NAIRA, DAILY_LOGIN_BONUS),
            })
            return LoginBonusResponse(
                credited=True,
                amount=DAILY_LOGIN_BONUS,
                consecutive_login_days=streak,
                message="Daily login bonus added for today.",
            )

        result = self.store.run_transaction(work)
        if result.credited:
            logger.info("Daily login bonus %s credited to %s (streak %d)", result.amount, user_id, result.consecutive_login_days)
        return result

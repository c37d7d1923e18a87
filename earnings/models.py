from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Tier(str, Enum):
    FREE = "free"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"
    PLATINUM = "platinum"


class SubscriptionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TaskKind(str, Enum):
    WATCH_AD = "watch_ad"
    MINI_GAME = "mini_game"
    CPA_OFFER = "cpa_offer"


class SubmissionStatus(str, Enum):
    PENDING_SUBMISSION = "pending_submission"
    SUBMITTED_FOR_REVIEW = "submitted_for_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class CamelModel(BaseModel):
    """Documents are stored with snake_case keys and served as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ==================== DOCUMENTS ====================

class PayoutDetails(CamelModel):
    bank_name: str = Field(..., min_length=1)
    bank_code: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)
    account_name: str = Field(..., min_length=1)


class Subscription(CamelModel):
    tier: Tier
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    expires_at: Optional[datetime] = None
    plan_code: Optional[str] = None
    games_per_day: Optional[int] = None
    updated_at: Optional[datetime] = None


class UserAccount(CamelModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None

    naira_balance: Decimal = Decimal("0")
    referral_earnings: Decimal = Decimal("0")
    affiliate_earnings: Decimal = Decimal("0")

    referral_code: Optional[str] = None
    referred_by: Optional[str] = None
    referred_by_uid: Optional[str] = None
    total_referrals: int = 0
    referrals: list[str] = Field(default_factory=list)

    subscription: Optional[Subscription] = None
    payout_details: Optional[PayoutDetails] = None

    daily_free_games_played: dict[str, int] = Field(default_factory=dict)
    daily_paid_games_played: dict[str, int] = Field(default_factory=dict)

    last_login_date: Optional[date] = None
    consecutive_login_days: int = 0
    created_at: Optional[datetime] = None


class WithdrawalRequest(CamelModel):
    id: str
    user_id: str
    user_email: Optional[str] = None
    display_name: Optional[str] = None
    gross_amount: Decimal
    fee: Decimal
    net_amount: Decimal
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    payout_details: PayoutDetails
    requested_at: datetime
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    def can_process(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


class AffiliateProduct(CamelModel):
    id: str
    title: str
    description: str = ""
    image_url: Optional[str] = None
    base_link: str
    price: Optional[Decimal] = None
    base_commission: Decimal
    is_active: bool = True
    total_clicks: int = 0
    total_sales: int = 0
    total_earnings: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Game(CamelModel):
    id: str
    title: str
    description: str = ""
    embed_url: str
    thumbnail_url: Optional[str] = None
    is_paid: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None


class Task(CamelModel):
    id: str
    title: str
    description: str = ""
    kind: TaskKind
    reward: Decimal
    link: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class UserTask(CamelModel):
    id: str
    user_id: str
    task_id: str
    status: SubmissionStatus = SubmissionStatus.PENDING_SUBMISSION
    reward_amount: Decimal
    screenshot_url: Optional[str] = None
    created_at: datetime
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


# ==================== REQUESTS ====================

class CreateWithdrawalRequest(CamelModel):
    amount: Decimal = Field(..., description="Gross amount to withdraw")

    model_config = ConfigDict(json_schema_extra={"example": {"amount": 1000}})


class ProcessWithdrawalRequest(CamelModel):
    status: str = Field(..., description="approved or rejected")
    rejection_reason: Optional[str] = None


class RecordSaleRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    sale_amount: Decimal


class VerifyAccountRequest(CamelModel):
    account_number: str = Field(..., min_length=1)
    bank_code: str = Field(..., min_length=1)


class RegisterUserRequest(CamelModel):
    email: Optional[str] = None
    display_name: Optional[str] = None
    referral_code: Optional[str] = None


class ApplyReferralRequest(CamelModel):
    referral_code: str = Field(..., min_length=1)


class CompleteGameRequest(CamelModel):
    session_id: str = Field(..., min_length=1, description="One id per finished game session")


class CompleteTaskRequest(CamelModel):
    completion_id: str = Field(..., min_length=1)


class SubmitTaskRequest(CamelModel):
    screenshot_url: str = Field(..., min_length=1)


class ReviewSubmissionRequest(CamelModel):
    status: str = Field(..., description="approved or rejected")
    rejection_reason: Optional[str] = None


class ProductInput(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    image_url: Optional[str] = None
    base_link: str = Field(..., min_length=1)
    price: Optional[Decimal] = None
    base_commission: Decimal
    is_active: bool = True


class ProductUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    base_link: Optional[str] = None
    price: Optional[Decimal] = None
    base_commission: Optional[Decimal] = None
    is_active: Optional[bool] = None


class GameInput(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    embed_url: str = Field(..., min_length=1)
    thumbnail_url: Optional[str] = None
    is_paid: bool = False
    is_active: bool = True


class GameUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    embed_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_paid: Optional[bool] = None
    is_active: Optional[bool] = None


class TaskInput(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    kind: TaskKind
    reward: Decimal
    link: Optional[str] = None
    is_active: bool = True


class TaskUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    kind: Optional[TaskKind] = None
    reward: Optional[Decimal] = None
    link: Optional[str] = None
    is_active: Optional[bool] = None


class SubscribeRequest(CamelModel):
    plan: str = Field(..., min_length=1, description="Paystack plan code")


# ==================== RESPONSES ====================

class WithdrawalResponse(CamelModel):
    request: WithdrawalRequest
    message: str


class UserListItem(CamelModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None


class BalanceSummary(CamelModel):
    user_id: str
    naira_balance: Decimal
    referral_earnings: Decimal
    affiliate_earnings: Decimal
    total_withdrawable: Decimal
    tier: Tier
    consecutive_login_days: int


class SaleResponse(CamelModel):
    user_id: str
    product_id: str
    tier: Tier
    commission_rate: Decimal
    earning_percentage: Decimal
    total_commission: Decimal
    user_portion: Decimal
    message: str


class RewardStatusResponse(CamelModel):
    game_id: str
    is_paid: bool
    eligible: bool
    played_today: int
    daily_limit: int
    reward_per_game: Decimal


class RewardResponse(CamelModel):
    credited: bool
    amount: Decimal
    played_today: int
    daily_limit: int
    message: str


class LoginBonusResponse(CamelModel):
    credited: bool
    amount: Decimal
    consecutive_login_days: int
    message: str

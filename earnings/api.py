import json
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import Principal, require_admin, require_user
from .catalog import CatalogService
from .config import Settings
from .errors import (
    AlreadyProcessed,
    EarningsServiceError,
    NotFoundError,
    SubscriptionRequired,
    UpstreamFailure,
)
from .logging import get_logger
from .models import (
    AffiliateProduct,
    ApplyReferralRequest,
    BalanceSummary,
    CompleteGameRequest,
    CompleteTaskRequest,
    CreateWithdrawalRequest,
    Game,
    GameInput,
    GameUpdate,
    LoginBonusResponse,
    PayoutDetails,
    ProcessWithdrawalRequest,
    ProductInput,
    ProductUpdate,
    RecordSaleRequest,
    RegisterUserRequest,
    ReviewSubmissionRequest,
    RewardResponse,
    RewardStatusResponse,
    SaleResponse,
    SubmitTaskRequest,
    SubscribeRequest,
    Task,
    TaskInput,
    TaskUpdate,
    UserAccount,
    UserListItem,
    UserTask,
    VerifyAccountRequest,
    WithdrawalRequest,
    WithdrawalResponse,
)
from .notifications import Notifier
from .paystack import PaystackClient, handle_webhook_event, verify_webhook_signature
from .rewards import RewardService
from .service import EarningsService
from .store import InMemoryDocumentStore, TransactionConflict

logger = get_logger(__name__)


def to_http_error(e: Exception) -> HTTPException:
    if isinstance(e, TransactionConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Please try again.")
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AlreadyProcessed):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, SubscriptionRequired):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    if isinstance(e, UpstreamFailure):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    if isinstance(e, EarningsServiceError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[InMemoryDocumentStore] = None,
    notifier: Optional[Notifier] = None,
    paystack: Optional[PaystackClient] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or InMemoryDocumentStore()
    notifier = notifier or Notifier(settings)
    paystack = paystack or PaystackClient(settings)

    app = FastAPI(
        title="TaskPlay Earnings API",
        description="Balances, withdrawals, affiliate commissions and game/task rewards",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.earnings = EarningsService(store, settings, notifier, clock)
    app.state.rewards = RewardService(store, clock)
    app.state.catalog = CatalogService(store, clock)
    app.state.paystack = paystack

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": message})

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    earnings: EarningsService = app.state.earnings
    rewards: RewardService = app.state.rewards
    catalog: CatalogService = app.state.catalog
    paystack: PaystackClient = app.state.paystack
    settings: Settings = app.state.settings

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "taskplay-earnings"}

    # ==================== ACCOUNT ====================

    @app.post("/me", response_model=UserAccount, status_code=status.HTTP_201_CREATED, tags=["Account"])
    def register(request: RegisterUserRequest, principal: Principal = Depends(require_user)) -> UserAccount:
        try:
            return earnings.register_user(principal.uid, request.email, request.display_name, request.referral_code)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/me", response_model=BalanceSummary, tags=["Account"])
    def get_me(principal: Principal = Depends(require_user)) -> BalanceSummary:
        try:
            return earnings.balance_summary(principal.uid)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.put("/me/payout-details", response_model=UserAccount, tags=["Account"])
    def update_payout_details(details: PayoutDetails, principal: Principal = Depends(require_user)) -> UserAccount:
        try:
            return earnings.set_payout_details(principal.uid, details)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.post("/me/daily-bonus", response_model=LoginBonusResponse, tags=["Account"])
    def daily_bonus(principal: Principal = Depends(require_user)) -> LoginBonusResponse:
        try:
            return earnings.claim_daily_login_bonus(principal.uid)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.post("/referrals/apply", response_model=UserAccount, tags=["Account"])
    def apply_referral(request: ApplyReferralRequest, principal: Principal = Depends(require_user)) -> UserAccount:
        try:
            return earnings.apply_referral(request.referral_code, principal.uid)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    # ==================== WITHDRAWALS ====================

    @app.post(
        "/withdrawal-requests",
        response_model=WithdrawalResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Withdrawals"],
    )
    def create_withdrawal(request: CreateWithdrawalRequest, principal: Principal = Depends(require_user)) -> WithdrawalResponse:
        try:
            return earnings.request_withdrawal(principal.uid, request.amount)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.put("/withdrawal-requests/{request_id}", response_model=WithdrawalResponse, tags=["Withdrawals"])
    def process_withdrawal(
        request_id: str,
        request: ProcessWithdrawalRequest,
        principal: Principal = Depends(require_admin),
    ) -> WithdrawalResponse:
        try:
            return earnings.process_withdrawal(request_id, request.status, request.rejection_reason)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/withdrawal-requests", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
    def list_withdrawals(
        status_filter: Optional[str] = Query(None, alias="status"),
        principal: Principal = Depends(require_admin),
    ) -> list[WithdrawalRequest]:
        try:
            return earnings.list_withdrawals(status=status_filter)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.get("/withdrawal-history", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
    def withdrawal_history(
        status_filter: Optional[str] = Query(None, alias="status"),
        principal: Principal = Depends(require_user),
    ) -> list[WithdrawalRequest]:
        try:
            return earnings.withdrawal_history(principal.uid, status=status_filter)
        except EarningsServiceError as e:
            raise to_http_error(e)

    # ==================== BANKS ====================

    @app.get("/banks", tags=["Banks"])
    def list_banks(principal: Principal = Depends(require_user)):
        try:
            return {"banks": paystack.list_banks()}
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.post("/verify-account", tags=["Banks"])
    def verify_account(request: VerifyAccountRequest, principal: Principal = Depends(require_user)):
        try:
            return {"accountName": paystack.resolve_account(request.account_number, request.bank_code)}
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.get("/admin/users", response_model=list[UserListItem], tags=["Admin"])
    def list_users(principal: Principal = Depends(require_admin)) -> list[UserListItem]:
        return earnings.list_users()

    # ==================== AFFILIATE ====================

    @app.post("/admin/record-sale", response_model=SaleResponse, tags=["Affiliate"])
    def record_sale(request: RecordSaleRequest, principal: Principal = Depends(require_admin)) -> SaleResponse:
        try:
            return earnings.record_sale(request.user_id, request.product_id, request.sale_amount)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/affiliate-products", response_model=list[AffiliateProduct], tags=["Affiliate"])
    def list_active_products() -> list[AffiliateProduct]:
        return catalog.list_products(active_only=True)

    @app.post("/affiliate-products/{product_id}/click", response_model=AffiliateProduct, tags=["Affiliate"])
    def record_click(product_id: str, principal: Principal = Depends(require_user)) -> AffiliateProduct:
        try:
            return catalog.record_click(product_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/admin/affiliate-products", response_model=list[AffiliateProduct], tags=["Admin"])
    def admin_list_products(principal: Principal = Depends(require_admin)) -> list[AffiliateProduct]:
        return catalog.list_products()

    @app.post(
        "/admin/affiliate-products",
        response_model=AffiliateProduct,
        status_code=status.HTTP_201_CREATED,
        tags=["Admin"],
    )
    def create_product(request: ProductInput, principal: Principal = Depends(require_admin)) -> AffiliateProduct:
        try:
            return catalog.create_product(request)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.get("/admin/affiliate-products/{product_id}", response_model=AffiliateProduct, tags=["Admin"])
    def get_product(product_id: str, principal: Principal = Depends(require_admin)) -> AffiliateProduct:
        try:
            return catalog.get_product(product_id)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.put("/admin/affiliate-products/{product_id}", response_model=AffiliateProduct, tags=["Admin"])
    def update_product(
        product_id: str,
        request: ProductUpdate,
        principal: Principal = Depends(require_admin),
    ) -> AffiliateProduct:
        try:
            return catalog.update_product(product_id, request)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.delete(
        "/admin/affiliate-products/{product_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        tags=["Admin"],
    )
    def delete_product(product_id: str, principal: Principal = Depends(require_admin)) -> None:
        try:
            catalog.delete_product(product_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    # ==================== GAMES ====================

    @app.get("/games", response_model=list[Game], tags=["Games"])
    def list_games() -> list[Game]:
        return catalog.list_games(active_only=True)

    @app.post("/games", response_model=Game, status_code=status.HTTP_201_CREATED, tags=["Games"])
    def create_game(request: GameInput, principal: Principal = Depends(require_admin)) -> Game:
        return catalog.create_game(request)

    @app.put("/games/{game_id}", response_model=Game, tags=["Games"])
    def update_game(game_id: str, request: GameUpdate, principal: Principal = Depends(require_admin)) -> Game:
        try:
            return catalog.update_game(game_id, request)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.delete("/games/{game_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Games"])
    def delete_game(game_id: str, principal: Principal = Depends(require_admin)) -> None:
        try:
            catalog.delete_game(game_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/games/{game_id}/reward-status", response_model=RewardStatusResponse, tags=["Games"])
    def game_reward_status(game_id: str, principal: Principal = Depends(require_user)) -> RewardStatusResponse:
        try:
            return rewards.game_reward_status(principal.uid, game_id)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.post("/games/{game_id}/complete", response_model=RewardResponse, tags=["Games"])
    def complete_game(
        game_id: str,
        request: CompleteGameRequest,
        principal: Principal = Depends(require_user),
    ) -> RewardResponse:
        try:
            return rewards.complete_game(principal.uid, game_id, request.session_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    # ==================== TASKS ====================

    @app.get("/tasks", response_model=list[Task], tags=["Tasks"])
    def list_tasks() -> list[Task]:
        return catalog.list_tasks(active_only=True)

    @app.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED, tags=["Tasks"])
    def create_task(request: TaskInput, principal: Principal = Depends(require_admin)) -> Task:
        try:
            return catalog.create_task(request)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.put("/tasks/{task_id}", response_model=Task, tags=["Tasks"])
    def update_task(task_id: str, request: TaskUpdate, principal: Principal = Depends(require_admin)) -> Task:
        try:
            return catalog.update_task(task_id, request)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Tasks"])
    def delete_task(task_id: str, principal: Principal = Depends(require_admin)) -> None:
        try:
            catalog.delete_task(task_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.post("/tasks/{task_id}/complete", response_model=RewardResponse, tags=["Tasks"])
    def complete_task(
        task_id: str,
        request: CompleteTaskRequest,
        principal: Principal = Depends(require_user),
    ) -> RewardResponse:
        try:
            return rewards.complete_task(principal.uid, task_id, request.completion_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.post("/tasks/{task_id}/start", response_model=UserTask, status_code=status.HTTP_201_CREATED, tags=["Tasks"])
    def start_task(task_id: str, principal: Principal = Depends(require_user)) -> UserTask:
        try:
            return rewards.start_task(principal.uid, task_id)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/me/tasks", response_model=list[UserTask], tags=["Tasks"])
    def my_tasks(principal: Principal = Depends(require_user)) -> list[UserTask]:
        return rewards.list_user_tasks(principal.uid)

    @app.post("/me/tasks/{user_task_id}/submit", response_model=UserTask, tags=["Tasks"])
    def submit_task(
        user_task_id: str,
        request: SubmitTaskRequest,
        principal: Principal = Depends(require_user),
    ) -> UserTask:
        try:
            return rewards.submit_task(principal.uid, user_task_id, request.screenshot_url)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    @app.get("/admin/submissions", response_model=list[UserTask], tags=["Admin"])
    def list_submissions(
        status_filter: str = Query("submitted_for_review", alias="status"),
        principal: Principal = Depends(require_admin),
    ) -> list[UserTask]:
        try:
            return rewards.list_submissions(status_filter)
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.put("/admin/submissions/{user_task_id}", response_model=UserTask, tags=["Admin"])
    def review_submission(
        user_task_id: str,
        request: ReviewSubmissionRequest,
        principal: Principal = Depends(require_admin),
    ) -> UserTask:
        try:
            return rewards.review_submission(user_task_id, request.status, request.rejection_reason)
        except (EarningsServiceError, TransactionConflict) as e:
            raise to_http_error(e)

    # ==================== SUBSCRIPTIONS ====================

    @app.post("/paystack/subscribe", tags=["Subscriptions"])
    def subscribe(request: SubscribeRequest, principal: Principal = Depends(require_user)):
        try:
            user = earnings.get_user(principal.uid)
            if not user.email:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="An email address is required.")
            data = paystack.initialize_subscription(user.email, request.plan)
        except EarningsServiceError as e:
            raise to_http_error(e)
        return {"authorizationUrl": data["authorization_url"], "reference": data["reference"]}

    @app.post("/paystack/manage", tags=["Subscriptions"])
    def manage_subscription(principal: Principal = Depends(require_user)):
        try:
            user = earnings.get_user(principal.uid)
            if not user.email:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="An email address is required.")
            return {"link": paystack.manage_subscription_link(user.email)}
        except EarningsServiceError as e:
            raise to_http_error(e)

    @app.post("/paystack/webhook", tags=["Subscriptions"])
    async def paystack_webhook(request: Request):
        payload = await request.body()
        signature = request.headers.get("x-paystack-signature")
        if not verify_webhook_signature(payload, signature, settings.paystack_secret_key or ""):
            logger.warning("Rejected Paystack webhook with invalid signature")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

        try:
            event = json.loads(payload)
            return handle_webhook_event(event, app.state.store, settings)
        except Exception:
            # Acknowledge anyway so Paystack does not retry a payload we cannot handle
            logger.error("Error processing Paystack webhook", exc_info=True)
            return {"status": "error"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)

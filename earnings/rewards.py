"""
Reward accounting for games and tasks.

Every reward is credited to the general naira balance inside the same
transaction that records it, and each reward is tied to a claim document
(one per game session or task completion) so that a repeated completion
event can never pay twice.
"""

from datetime import date, datetime
from typing import Callable, Optional, Union
from uuid import uuid4

from .balance import ZERO, BalanceCategory, credit_update
from .errors import (
    AlreadyProcessed,
    ConflictError,
    InvalidStatus,
    NotFoundError,
    ReasonRequired,
    SubscriptionRequired,
    ValidationError,
)
from .logging import get_logger
from .models import (
    Game,
    RewardResponse,
    RewardStatusResponse,
    SubmissionStatus,
    Task,
    TaskKind,
    UserAccount,
    UserTask,
)
from .service import USERS, load_user, local_now
from .store import Increment, InMemoryDocumentStore, Transaction
from .tiers import FREE_GAME_BENEFIT, TierBenefit, has_active_subscription, paid_game_benefit

logger = get_logger(__name__)

GAMES = "games"
TASKS = "tasks"
USER_TASKS = "user_tasks"
REWARD_CLAIMS = "rewardClaims"

FREE_GAMES_FIELD = "daily_free_games_played"
PAID_GAMES_FIELD = "daily_paid_games_played"


def game_policy(user: UserAccount, game: Game, now: datetime) -> tuple[str, TierBenefit]:
    """Return the daily counter field and the limit/reward that apply to this play."""
    if not game.is_paid:
        return FREE_GAMES_FIELD, FREE_GAME_BENEFIT

    benefit = paid_game_benefit(user.subscription.tier) if has_active_subscription(user, now) else None
    if benefit is None:
        raise SubscriptionRequired("An active subscription is required to earn from this game. Upgrade to VIP to continue.")
    return PAID_GAMES_FIELD, benefit


def played_on(user: UserAccount, counter_field: str, day: date) -> int:
    return getattr(user, counter_field).get(day.isoformat(), 0)


class RewardService:
    def __init__(self, store: InMemoryDocumentStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or local_now

    # ==================== GAMES ====================

    def _load_game(self, reader: Union[Transaction, InMemoryDocumentStore], game_id: str) -> Game:
        doc = reader.get(GAMES, game_id)
        if doc is None or not doc.get("is_active", True):
            raise NotFoundError(f"Game {game_id} not found")
        return Game.model_validate(doc)

    def game_reward_status(self, user_id: str, game_id: str) -> RewardStatusResponse:
        now = self._clock()
        user = load_user(self.store, user_id)
        game = self._load_game(self.store, game_id)
        counter_field, benefit = game_policy(user, game, now)
        played = played_on(user, counter_field, now.date())
        return RewardStatusResponse(
            game_id=game_id,
            is_paid=game.is_paid,
            eligible=played < benefit.daily_game_limit,
            played_today=played,
            daily_limit=benefit.daily_game_limit,
            reward_per_game=benefit.reward_per_game,
        )

    def complete_game(self, user_id: str, game_id: str, session_id: str) -> RewardResponse:
        """
        Credit the reward for one finished game session.

        Past the daily limit the user may keep playing, the session just earns
        nothing. Reporting the same session twice is answered without paying again.
        """
        if not session_id:
            raise ValidationError("Game session id is required.")
        now = self._clock()
        day_key = now.date().isoformat()
        claim_id = f"game:{user_id}:{session_id}"

        def work(txn: Transaction) -> RewardResponse:
            user = load_user(txn, user_id)
            game = self._load_game(txn, game_id)
            counter_field, benefit = game_policy(user, game, now)
            played = played_on(user, counter_field, now.date())
            limit = benefit.daily_game_limit

            if txn.get(REWARD_CLAIMS, claim_id) is not None:
                return RewardResponse(
                    credited=False, amount=ZERO, played_today=played, daily_limit=limit,
                    message="Reward already issued for this game session.",
                )
            if played >= limit:
                return RewardResponse(
                    credited=False, amount=ZERO, played_today=played, daily_limit=limit,
                    message="Daily reward limit reached. You can keep playing without rewards.",
                )

            reward = benefit.reward_per_game
            txn.create(REWARD_CLAIMS, {
                "kind": "game", "user_id": user_id, "game_id": game_id,
                "session_id": session_id, "amount": reward, "created_at": now,
            }, doc_id=claim_id)
            txn.update(USERS, user_id, {
                **credit_update(BalanceCategory.NAIRA, reward),
                f"{counter_field}.{day_key}": Increment(1),
            })
            return RewardResponse(
                credited=True, amount=reward, played_today=played + 1, daily_limit=limit,
                message=f"You earned ₦{reward}!",
            )

        result = self.store.run_transaction(work)
        if result.credited:
            logger.info("Game reward %s credited to %s for game %s (%d/%d today)",
                        result.amount, user_id, game_id, result.played_today, result.daily_limit)
        return result

    # ==================== TASKS ====================

    def _load_task(self, txn: Transaction, task_id: str) -> Task:
        doc = txn.get(TASKS, task_id)
        if doc is None or not doc.get("is_active", True):
            raise NotFoundError(f"Task {task_id} not found")
        return Task.model_validate(doc)

    def complete_task(self, user_id: str, task_id: str, completion_id: str) -> RewardResponse:
        """Credit an ad or mini-game task once per completion."""
        if not completion_id:
            raise ValidationError("Completion id is required.")
        now = self._clock()
        claim_id = f"task:{user_id}:{task_id}:{completion_id}"

        def work(txn: Transaction) -> RewardResponse:
            load_user(txn, user_id)
            task = self._load_task(txn, task_id)
            if task.kind == TaskKind.CPA_OFFER:
                raise ValidationError("Offer tasks are rewarded after their screenshot is reviewed.")

            if txn.get(REWARD_CLAIMS, claim_id) is not None:
                return RewardResponse(
                    credited=False, amount=ZERO, played_today=0, daily_limit=0,
                    message="Reward already issued for this task completion.",
                )

            txn.create(REWARD_CLAIMS, {
                "kind": "task", "user_id": user_id, "task_id": task_id,
                "completion_id": completion_id, "amount": task.reward, "created_at": now,
            }, doc_id=claim_id)
            txn.update(USERS, user_id, credit_update(BalanceCategory.NAIRA, task.reward))
            return RewardResponse(
                credited=True, amount=task.reward, played_today=0, daily_limit=0,
                message=f"You earned ₦{task.reward}!",
            )

        result = self.store.run_transaction(work)
        if result.credited:
            logger.info("Task reward %s credited to %s for task %s", result.amount, user_id, task_id)
        return result

    def start_task(self, user_id: str, task_id: str) -> UserTask:
        """Open a screenshot submission for an offer task."""
        now = self._clock()

        def work(txn: Transaction) -> UserTask:
            load_user(txn, user_id)
            task = self._load_task(txn, task_id)
            if task.kind != TaskKind.CPA_OFFER:
                raise ValidationError("Only offer tasks need a screenshot submission.")

            open_statuses = (SubmissionStatus.PENDING_SUBMISSION, SubmissionStatus.SUBMITTED_FOR_REVIEW)
            existing = txn.query(USER_TASKS, {"user_id": user_id, "task_id": task_id})
            if any(doc["status"] in open_statuses for doc in existing):
                raise ConflictError("You already have an open submission for this task.")

            user_task = UserTask(
                id=uuid4().hex,
                user_id=user_id,
                task_id=task_id,
                status=SubmissionStatus.PENDING_SUBMISSION,
                reward_amount=task.reward,
                created_at=now,
            )
            txn.create(USER_TASKS, user_task.model_dump(), doc_id=user_task.id)
            return user_task

        return self.store.run_transaction(work)

    def submit_task(self, user_id: str, user_task_id: str, screenshot_url: str) -> UserTask:
        if not (screenshot_url or "").strip():
            raise ValidationError("A screenshot is required.")

        def work(txn: Transaction) -> UserTask:
            user_task = self._load_user_task(txn, user_task_id)
            if user_task.user_id != user_id:
                raise NotFoundError(f"Submission {user_task_id} not found")
            if user_task.status != SubmissionStatus.PENDING_SUBMISSION:
                raise AlreadyProcessed(f"Submission is already {user_task.status.value}.")

            changes = {
                "status": SubmissionStatus.SUBMITTED_FOR_REVIEW,
                "screenshot_url": screenshot_url.strip(),
                "submitted_at": self._clock(),
            }
            txn.update(USER_TASKS, user_task_id, changes)
            return user_task.model_copy(update=changes)

        return self.store.run_transaction(work)

    def review_submission(self, user_task_id: str, status: str, rejection_reason: Optional[str] = None) -> UserTask:
        """Approve (and pay) or reject a submitted offer task. Each submission is reviewed once."""
        if status not in (SubmissionStatus.APPROVED.value, SubmissionStatus.REJECTED.value):
            raise InvalidStatus("Invalid status provided.")
        approve = status == SubmissionStatus.APPROVED.value
        reason = (rejection_reason or "").strip() or None
        if not approve and not reason:
            raise ReasonRequired("Rejection reason is required for rejected status.")

        def work(txn: Transaction) -> UserTask:
            user_task = self._load_user_task(txn, user_task_id)
            if user_task.status != SubmissionStatus.SUBMITTED_FOR_REVIEW:
                raise AlreadyProcessed(f"Submission is already {user_task.status.value}.")

            changes = {
                "status": SubmissionStatus(status),
                "reviewed_at": self._clock(),
                "rejection_reason": None if approve else reason,
            }
            txn.update(USER_TASKS, user_task_id, changes)
            if approve:
                load_user(txn, user_task.user_id)
                txn.update(USERS, user_task.user_id, credit_update(BalanceCategory.NAIRA, user_task.reward_amount))
            return user_task.model_copy(update=changes)

        user_task = self.store.run_transaction(work)
        logger.info("Submission %s for user %s %s", user_task_id, user_task.user_id, status)
        return user_task

    def list_user_tasks(self, user_id: str) -> list[UserTask]:
        docs = self.store.query(USER_TASKS, {"user_id": user_id}, order_by="created_at", descending=True)
        return [UserTask.model_validate(d) for d in docs]

    def list_submissions(self, status: str = SubmissionStatus.SUBMITTED_FOR_REVIEW.value) -> list[UserTask]:
        try:
            wanted = SubmissionStatus(status)
        except ValueError:
            raise InvalidStatus(f"Unknown submission status {status!r}")
        docs = self.store.query(USER_TASKS, {"status": wanted}, order_by="submitted_at", descending=True)
        return [UserTask.model_validate(d) for d in docs]

    def _load_user_task(self, txn: Transaction, user_task_id: str) -> UserTask:
        doc = txn.get(USER_TASKS, user_task_id)
        if doc is None:
            raise NotFoundError(f"Submission {user_task_id} not found")
        return UserTask.model_validate(doc)

"""
Unit Tests for reward accounting

Tests cover:
1. Free and paid game caps
2. Per-session idempotency
3. Ad/mini-game tasks and reviewed offer tasks
4. Daily login bonus and streaks
5. Signup and referral bonuses
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from earnings.errors import (
    AlreadyProcessed,
    ConflictError,
    InvalidStatus,
    NotFoundError,
    ReasonRequired,
    SubscriptionRequired,
    ValidationError,
)
from earnings.models import GameInput, SubmissionStatus, Subscription, TaskInput, TaskKind, Tier
from earnings import service as service_module
from earnings.service import USERS


@pytest.fixture
def free_game(catalog):
    return catalog.create_game(GameInput(title="Fruit Slice", embed_url="https://games.example.com/fruit"))


@pytest.fixture
def paid_game(catalog):
    return catalog.create_game(GameInput(title="Gold Rush", embed_url="https://games.example.com/rush", is_paid=True))


def silver_subscription(clock) -> dict:
    return Subscription(tier=Tier.SILVER, expires_at=clock() + timedelta(days=30)).model_dump()


class TestFreeGames:
    def test_three_rewarded_plays_per_day(self, rewards, service, make_user, free_game):
        make_user("ada")

        results = [rewards.complete_game("ada", free_game.id, f"session-{i}") for i in range(4)]

        assert [r.credited for r in results] == [True, True, True, False]
        assert all(r.amount == Decimal("5") for r in results[:3])
        assert results[3].amount == Decimal("0")
        assert service.get_user("ada").naira_balance == Decimal("15")

    def test_counter_resets_next_day(self, rewards, service, make_user, free_game, clock):
        make_user("ada")
        for i in range(3):
            rewards.complete_game("ada", free_game.id, f"day1-{i}")

        clock.advance(days=1)
        result = rewards.complete_game("ada", free_game.id, "day2-0")

        assert result.credited
        assert result.played_today == 1
        assert service.get_user("ada").naira_balance == Decimal("20")

    def test_same_session_pays_once(self, rewards, service, make_user, free_game):
        make_user("ada")

        first = rewards.complete_game("ada", free_game.id, "session-1")
        second = rewards.complete_game("ada", free_game.id, "session-1")

        assert first.credited
        assert not second.credited
        assert service.get_user("ada").naira_balance == Decimal("5")
        assert rewards.game_reward_status("ada", free_game.id).played_today == 1

    def test_reward_status(self, rewards, make_user, free_game):
        make_user("ada")

        status = rewards.game_reward_status("ada", free_game.id)

        assert status.eligible
        assert status.daily_limit == 3
        assert status.reward_per_game == Decimal("5")

    def test_inactive_game_not_found(self, rewards, catalog, make_user, free_game):
        make_user("ada")
        catalog.delete_game(free_game.id)

        with pytest.raises(NotFoundError):
            rewards.complete_game("ada", free_game.id, "session-1")


class TestPaidGames:
    def test_silver_cap_and_reward(self, rewards, service, make_user, paid_game, clock):
        make_user("ada", subscription=silver_subscription(clock))

        results = [rewards.complete_game("ada", paid_game.id, f"s-{i}") for i in range(11)]

        assert sum(r.credited for r in results) == 10
        assert results[0].amount == Decimal("15")
        assert results[-1].daily_limit == 10
        assert service.get_user("ada").naira_balance == Decimal("150")

    def test_paid_and_free_counters_are_separate(self, rewards, make_user, paid_game, free_game, clock):
        make_user("ada", subscription=silver_subscription(clock))
        for i in range(3):
            rewards.complete_game("ada", free_game.id, f"free-{i}")

        assert rewards.complete_game("ada", paid_game.id, "paid-0").played_today == 1

    def test_requires_subscription(self, rewards, make_user, paid_game):
        make_user("ada")

        with pytest.raises(SubscriptionRequired):
            rewards.complete_game("ada", paid_game.id, "s-1")

    def test_expired_subscription_is_free_tier(self, rewards, make_user, paid_game, clock):
        make_user("ada", subscription=Subscription(tier=Tier.GOLD, expires_at=clock() - timedelta(seconds=1)).model_dump())

        with pytest.raises(SubscriptionRequired):
            rewards.game_reward_status("ada", paid_game.id)


class TestTasks:
    def test_ad_task_paid_once_per_completion(self, rewards, catalog, service, make_user):
        make_user("ada")
        task = catalog.create_task(TaskInput(title="Watch ad", kind=TaskKind.WATCH_AD, reward=Decimal("3")))

        assert rewards.complete_task("ada", task.id, "c-1").credited
        assert not rewards.complete_task("ada", task.id, "c-1").credited
        assert rewards.complete_task("ada", task.id, "c-2").credited
        assert service.get_user("ada").naira_balance == Decimal("6")

    def test_task_reward_must_be_positive(self, catalog):
        with pytest.raises(ValidationError):
            catalog.create_task(TaskInput(title="Broken", kind=TaskKind.WATCH_AD, reward=Decimal("0")))


class TestOfferSubmissions:
    @pytest.fixture
    def offer(self, catalog):
        return catalog.create_task(TaskInput(
            title="Install app", kind=TaskKind.CPA_OFFER, reward=Decimal("150"), link="https://offers.example.com/1",
        ))

    def test_approved_submission_pays_once(self, rewards, service, make_user, offer):
        make_user("ada")
        user_task = rewards.start_task("ada", offer.id)
        rewards.submit_task("ada", user_task.id, "https://cdn.example.com/shot.png")

        reviewed = rewards.review_submission(user_task.id, "approved")

        assert reviewed.status == SubmissionStatus.APPROVED
        assert service.get_user("ada").naira_balance == Decimal("150")
        with pytest.raises(AlreadyProcessed):
            rewards.review_submission(user_task.id, "approved")
        assert service.get_user("ada").naira_balance == Decimal("150")

    def test_rejected_submission_pays_nothing(self, rewards, service, make_user, offer):
        make_user("ada")
        user_task = rewards.start_task("ada", offer.id)
        rewards.submit_task("ada", user_task.id, "https://cdn.example.com/shot.png")

        with pytest.raises(ReasonRequired):
            rewards.review_submission(user_task.id, "rejected")
        reviewed = rewards.review_submission(user_task.id, "rejected", "Screenshot is blurry")

        assert reviewed.rejection_reason == "Screenshot is blurry"
        assert service.get_user("ada").naira_balance == Decimal("0")

    def test_review_requires_submission(self, rewards, make_user, offer):
        make_user("ada")
        user_task = rewards.start_task("ada", offer.id)

        with pytest.raises(AlreadyProcessed):
            rewards.review_submission(user_task.id, "approved")
        with pytest.raises(InvalidStatus):
            rewards.review_submission(user_task.id, "paid")

    def test_one_open_submission_per_task(self, rewards, make_user, offer):
        make_user("ada")
        rewards.start_task("ada", offer.id)

        with pytest.raises(ConflictError):
            rewards.start_task("ada", offer.id)

    def test_cannot_submit_for_someone_else(self, rewards, make_user, offer):
        make_user("ada")
        make_user("bola")
        user_task = rewards.start_task("ada", offer.id)

        with pytest.raises(NotFoundError):
            rewards.submit_task("bola", user_task.id, "https://cdn.example.com/shot.png")

    def test_offer_tasks_cannot_be_completed_directly(self, rewards, make_user, offer):
        make_user("ada")

        with pytest.raises(ValidationError):
            rewards.complete_task("ada", offer.id, "c-1")

    def test_review_queue(self, rewards, make_user, offer):
        make_user("ada")
        user_task = rewards.start_task("ada", offer.id)
        rewards.submit_task("ada", user_task.id, "https://cdn.example.com/shot.png")

        assert [t.id for t in rewards.list_submissions()] == [user_task.id]


class TestDailyLoginBonus:
    def test_paid_once_per_day(self, service, make_user, clock):
        make_user("ada", last_login_date=clock().date() - timedelta(days=1), consecutive_login_days=1)

        first = service.claim_daily_login_bonus("ada")
        second = service.claim_daily_login_bonus("ada")

        assert first.credited and first.amount == Decimal("20")
        assert first.consecutive_login_days == 2
        assert not second.credited
        assert service.get_user("ada").naira_balance == Decimal("20")

    def test_missed_day_resets_streak(self, service, make_user, clock):
        make_user("ada", last_login_date=clock().date() - timedelta(days=3), consecutive_login_days=5)

        result = service.claim_daily_login_bonus("ada")

        assert result.credited
        assert result.consecutive_login_days == 1

    def test_first_check_starts_streak_without_bonus(self, service, make_user):
        make_user("ada")

        result = service.claim_daily_login_bonus("ada")

        assert not result.credited
        assert result.consecutive_login_days == 1
        assert service.get_user("ada").naira_balance == Decimal("0")


class TestSignupAndReferrals:
    def test_signup_bonus_and_code(self, service):
        user = service.register_user("ada", email="ada@example.com")

        assert user.naira_balance == Decimal("20")
        assert len(user.referral_code) == 8
        assert service.claim_daily_login_bonus("ada").credited is False

    def test_register_is_idempotent(self, service):
        service.register_user("ada")

        assert service.register_user("ada").naira_balance == Decimal("20")

    def test_concurrent_registration_returns_existing_user(self, service, store, make_user, monkeypatch):
        """A signup that loses the race retries and returns the winner's account."""
        real = service_module.generate_referral_code
        calls = []

        def racing_code():
            if not calls:
                make_user("ada", email="first@example.com")
            calls.append(1)
            return real()

        monkeypatch.setattr(service_module, "generate_referral_code", racing_code)

        user = service.register_user("ada", email="ada@example.com")

        assert user.email == "first@example.com"
        assert user.naira_balance == Decimal("0")
        assert [d["id"] for d in store.query(USERS)] == ["ada"]

    def test_list_users_ordered_by_email(self, service):
        service.register_user("ada", email="zed@example.com", display_name="Ada")
        service.register_user("bola", email="bola@example.com")

        users = service.list_users()

        assert [(u.uid, u.email, u.display_name) for u in users] == [
            ("bola", "bola@example.com", None),
            ("ada", "zed@example.com", "Ada"),
        ]

    def test_referral_credits_referrer(self, service):
        referrer = service.register_user("ada")

        service.register_user("bola", referral_code=referrer.referral_code.lower())

        ada = service.get_user("ada")
        assert ada.referral_earnings == Decimal("50")
        assert ada.total_referrals == 1
        assert ada.referrals == ["bola"]
        assert service.get_user("bola").referred_by_uid == "ada"

    def test_referral_applies_once(self, service):
        referrer = service.register_user("ada")
        service.register_user("bola", referral_code=referrer.referral_code)

        with pytest.raises(ConflictError):
            service.apply_referral(referrer.referral_code, "bola")
        assert service.get_user("ada").referral_earnings == Decimal("50")

    def test_self_referral_rejected(self, service):
        user = service.register_user("ada")

        with pytest.raises(ValidationError):
            service.apply_referral(user.referral_code, "ada")

    def test_bad_code_does_not_block_signup(self, service):
        user = service.register_user("bola", referral_code="NOPE1234")

        assert user.referred_by_uid is None
        assert user.naira_balance == Decimal("20")

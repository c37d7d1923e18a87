from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from earnings.api import create_app
from earnings.auth import issue_token
from earnings.catalog import CatalogService
from earnings.config import Settings
from earnings.models import PayoutDetails, Tier
from earnings.rewards import RewardService
from earnings.service import USERS, EarningsService
from earnings.store import InMemoryDocumentStore

WAT = timezone(timedelta(hours=1))


class FakeClock:
    """Settable clock so tests can move across calendar days."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def withdrawal_requested(self, request):
        self.events.append(("requested", request.id))

    def withdrawal_processed(self, request):
        self.events.append(("processed", request.id))


PAYOUT = PayoutDetails(
    bank_name="Access Bank",
    bank_code="044",
    account_number="0123456789",
    account_name="ADA OBI",
)


def seed_user(store: InMemoryDocumentStore, user_id: str, **fields) -> None:
    """Write a user document directly, bypassing signup bonuses."""
    doc = {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "display_name": user_id.title(),
        "naira_balance": Decimal("0"),
        "referral_earnings": Decimal("0"),
        "affiliate_earnings": Decimal("0"),
        "referrals": [],
        "total_referrals": 0,
        "daily_free_games_played": {},
        "daily_paid_games_played": {},
        "consecutive_login_days": 0,
    }
    doc.update(fields)
    store.create(USERS, doc, doc_id=user_id)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 10, 0, tzinfo=WAT))


@pytest.fixture
def settings():
    return Settings(auth_secret="test-secret-key-with-at-least-32-bytes", paystack_secret_key="sk_test_123", plan_tiers={"PLN_gold": Tier.GOLD})


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, settings, notifier, clock):
    return EarningsService(store, settings, notifier, clock)


@pytest.fixture
def rewards(store, clock):
    return RewardService(store, clock)


@pytest.fixture
def catalog(store, clock):
    return CatalogService(store, clock)


@pytest.fixture
def app(settings, store, notifier, clock):
    return create_app(settings=settings, store=store, notifier=notifier, clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(settings):
    def make(uid: str, is_admin: bool = False) -> dict:
        return {"Authorization": f"Bearer {issue_token(settings, uid, is_admin=is_admin)}"}

    return make


@pytest.fixture
def payout():
    return PAYOUT


@pytest.fixture
def make_user(store):
    def make(user_id: str, **fields) -> str:
        seed_user(store, user_id, **fields)
        return user_id

    return make

"""
Paystack adapter.

Thin pass-through to the Paystack REST API for bank lookups and
subscription checkout, plus webhook verification. Gateway errors surface
to the caller as UpstreamFailure.
"""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import httpx

from .config import Settings
from .errors import UpstreamFailure, ValidationError
from .logging import get_logger, mask_account_number
from .models import Subscription, SubscriptionStatus, Tier
from .store import InMemoryDocumentStore
from .tiers import SUBSCRIPTION_DAYS, paid_game_benefit

logger = get_logger(__name__)


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """Paystack signs the raw body with HMAC-SHA512 of the secret key."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackClient:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.settings.paystack_base_url,
                timeout=httpx.Timeout(10.0, connect=5.0),
            )
        return self._client

    def _headers(self) -> dict:
        if not self.settings.paystack_secret_key:
            raise UpstreamFailure("Paystack secret key is not configured")
        return {"Authorization": f"Bearer {self.settings.paystack_secret_key}"}

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._get_client().request(method, path, headers=self._headers(), **kwargs)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Paystack %s %s failed: %s", method, path, e)
            raise UpstreamFailure(f"Paystack request failed: {e}") from e

        if response.status_code >= 400 or not data.get("status"):
            message = data.get("message") or f"HTTP {response.status_code}"
            logger.warning("Paystack %s %s rejected: %s", method, path, message)
            raise UpstreamFailure(f"Paystack error: {message}")
        return data

    def list_banks(self, country: str = "nigeria") -> list[dict]:
        data = self._request("GET", "/bank", params={"country": country})
        banks = data.get("data")
        if not isinstance(banks, list):
            raise UpstreamFailure("Unexpected response format from Paystack")
        return sorted(banks, key=lambda b: (b.get("name") or "").lower())

    def resolve_account(self, account_number: str, bank_code: str) -> str:
        data = self._request(
            "GET", "/bank/resolve", params={"account_number": account_number, "bank_code": bank_code}
        )
        account_name = (data.get("data") or {}).get("account_name")
        if not account_name:
            raise UpstreamFailure("Paystack did not return an account name")
        logger.info("Resolved account %s at bank %s", mask_account_number(account_number), bank_code)
        return account_name

    def initialize_subscription(self, email: str, plan_code: str) -> dict:
        tier = self.settings.tier_for_plan(plan_code)
        if tier is None:
            raise ValidationError("Invalid plan selected.")
        # Paystack amounts are in kobo
        amount = self.settings.plan_amounts[tier] * 100
        data = self._request(
            "POST",
            "/transaction/initialize",
            json={"email": email, "plan": plan_code, "amount": amount, "reference": str(uuid4())},
        )["data"]
        return {
            "authorization_url": data.get("authorization_url"),
            "access_code": data.get("access_code"),
            "reference": data.get("reference"),
        }

    def manage_subscription_link(self, email: str) -> str:
        customer = self._request("GET", f"/customer/{email}")["data"]
        link = self._request("POST", f"/customer/{customer['customer_code']}/manage/link")["data"]
        return link["link"]


def handle_webhook_event(
    event: dict,
    store: InMemoryDocumentStore,
    settings: Settings,
    now: Optional[datetime] = None,
) -> dict:
    """
    Activate a subscription when a plan charge succeeds.

    Unknown events, non-plan charges and unknown plan codes are acknowledged
    without changes so that Paystack does not keep retrying them.
    """
    if event.get("event") != "charge.success":
        return {"status": "received"}

    data = event.get("data") or {}
    plan = data.get("plan") or {}
    plan_code = plan.get("plan_code") if isinstance(plan, dict) else None
    if not plan_code:
        logger.info("Webhook received for a non-plan charge, ignoring")
        return {"status": "ignored", "reason": "not a plan payment"}

    tier = settings.tier_for_plan(plan_code)
    if tier is None or tier == Tier.FREE:
        logger.error("Webhook plan code %s is not configured", plan_code)
        return {"status": "ignored", "reason": "plan not found"}

    email = (data.get("customer") or {}).get("email")
    users = store.query("users", {"email": email}, limit=1) if email else []
    if not users:
        logger.error("Webhook customer has no matching user")
        return {"status": "ignored", "reason": "user not found"}

    now = now or datetime.now(timezone.utc)
    subscription = Subscription(
        tier=tier,
        status=SubscriptionStatus.ACTIVE,
        plan_code=plan_code,
        games_per_day=paid_game_benefit(tier).daily_game_limit,
        expires_at=now + timedelta(days=SUBSCRIPTION_DAYS),
        updated_at=now,
    )
    store.update("users", users[0]["id"], {"subscription": subscription.model_dump()})
    logger.info("Activated %s subscription for user %s (ref %s)", tier.value, users[0]["id"], data.get("reference"))
    return {"status": "success", "tier": tier.value}

"""
Unit Tests for withdrawal emails
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx

from earnings.config import Settings
from earnings.models import PayoutDetails, WithdrawalRequest, WithdrawalStatus
from earnings.notifications import RESEND_API_URL, Notifier, format_naira, status_update


def make_request(**fields) -> WithdrawalRequest:
    values = dict(
        id="wr-1",
        user_id="ada",
        user_email="ada@example.com",
        display_name="Ada <script>",
        gross_amount=Decimal("1000"),
        fee=Decimal("50.00"),
        net_amount=Decimal("950.00"),
        payout_details=PayoutDetails(bank_name="Access", bank_code="044", account_number="0123456789", account_name="ADA"),
        requested_at=datetime(2024, 3, 15, tzinfo=timezone.utc),
    )
    values.update(fields)
    return WithdrawalRequest(**values)


def recording_notifier(settings, status_code=200):
    sent = []

    def handler(request):
        assert str(request.url) == RESEND_API_URL
        sent.append(json.loads(request.content))
        return httpx.Response(status_code, json={"id": "email-1"})

    return Notifier(settings, client=httpx.Client(transport=httpx.MockTransport(handler))), sent


class TestTemplates:
    def test_format_naira(self):
        assert format_naira(Decimal("12500")) == "₦12,500.00"

    def test_rejection_includes_reason_and_escapes(self):
        message = status_update(make_request(status=WithdrawalStatus.REJECTED, rejection_reason="Bad <b>name</b>"), "https://app")

        assert "rejected" in message.subject
        assert "Bad &lt;b&gt;name&lt;/b&gt;" in message.html
        assert "<script>" not in message.html


class TestNotifier:
    def test_withdrawal_requested_emails_admin_and_user(self):
        settings = Settings(resend_api_key="re_test", admin_email="admin@example.com")
        notifier, sent = recording_notifier(settings)

        notifier.withdrawal_requested(make_request())

        assert [m["to"] for m in sent] == [["admin@example.com"], ["ada@example.com"]]
        assert sent[0]["subject"] == "New Withdrawal Request"

    def test_delivery_failure_is_swallowed(self):
        settings = Settings(resend_api_key="re_test")
        notifier, sent = recording_notifier(settings, status_code=500)

        notifier.withdrawal_processed(make_request(status=WithdrawalStatus.APPROVED))

        assert len(sent) == 1

    def test_disabled_without_api_key(self):
        notifier, sent = recording_notifier(Settings())

        notifier.withdrawal_processed(make_request(status=WithdrawalStatus.APPROVED))

        assert sent == []

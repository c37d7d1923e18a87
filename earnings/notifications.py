"""
Withdrawal email notifications.

Emails are sent through the Resend HTTP API. Delivery is best-effort:
callers use Notifier.safe_send() after their transaction has committed, and
a failed delivery is logged without affecting the ledger operation.
"""

from dataclasses import dataclass
from decimal import Decimal
from html import escape
from typing import Optional

import httpx

from .config import Settings
from .errors import UpstreamFailure
from .logging import get_logger
from .models import WithdrawalRequest, WithdrawalStatus

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str


def format_naira(amount: Decimal) -> str:
    return f"₦{amount:,.2f}"


def _layout(title: str, body: str) -> str:
    return (
        "<html><body style=\"font-family: Arial, sans-serif; background: #f6f9fc;\">"
        "<div style=\"max-width: 560px; margin: 0 auto; background: #ffffff; padding: 24px;\">"
        f"<h1 style=\"font-size: 22px;\">{escape(title)}</h1>"
        f"{body}"
        "<p style=\"color: #8898aa; font-size: 12px;\">TaskPlay</p>"
        "</div></body></html>"
    )


def admin_notification(request: WithdrawalRequest, admin_email: str, app_url: str) -> EmailMessage:
    name = escape(request.display_name or "User")
    body = (
        f"<p>{name} ({escape(request.user_email or 'no email')}) has requested a withdrawal.</p>"
        f"<p>Gross amount: <strong>{format_naira(request.gross_amount)}</strong><br/>"
        f"Net payout: <strong>{format_naira(request.net_amount)}</strong></p>"
        f"<p><a href=\"{escape(app_url)}/dashboard/admin/withdrawals\">Review pending withdrawals</a></p>"
    )
    return EmailMessage(to=admin_email, subject="New Withdrawal Request", html=_layout("New Withdrawal Request", body))


def user_confirmation(request: WithdrawalRequest, app_url: str) -> EmailMessage:
    name = escape(request.display_name or "User")
    body = (
        f"<p>Hi {name},</p>"
        "<p>We have received your withdrawal request. Here is the breakdown:</p>"
        f"<p>Requested: {format_naira(request.gross_amount)}<br/>"
        f"Processing fee: {format_naira(request.fee)}<br/>"
        f"You will receive: <strong>{format_naira(request.net_amount)}</strong></p>"
        f"<p><a href=\"{escape(app_url)}/dashboard/profile\">Track your request</a></p>"
    )
    return EmailMessage(
        to=request.user_email, subject="Withdrawal Request Received", html=_layout("Withdrawal Request Received", body)
    )


def status_update(request: WithdrawalRequest, app_url: str) -> EmailMessage:
    name = escape(request.display_name or "User")
    if request.status == WithdrawalStatus.APPROVED:
        detail = (
            f"<p>Your withdrawal of {format_naira(request.net_amount)} has been approved "
            "and is on its way to your bank account.</p>"
        )
    else:
        detail = (
            "<p>Your withdrawal request was rejected and the full amount has been returned to your balance.</p>"
            f"<p>Reason: {escape(request.rejection_reason or '')}</p>"
        )
    body = f"<p>Hi {name},</p>{detail}<p><a href=\"{escape(app_url)}/dashboard/profile\">View your balance</a></p>"
    title = f"Your Withdrawal Request has been {request.status.value}"
    return EmailMessage(to=request.user_email, subject=title, html=_layout(title, body))


class Notifier:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = client

    @property
    def is_enabled(self) -> bool:
        return bool(self.settings.resend_api_key)

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(10.0, connect=5.0))
        return self._client

    def send(self, message: EmailMessage) -> None:
        if not self.is_enabled:
            logger.info("Email delivery disabled, skipping %r", message.subject)
            return
        try:
            response = self._get_client().post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.settings.resend_api_key}"},
                json={
                    "from": self.settings.email_from,
                    "to": [message.to],
                    "subject": message.subject,
                    "html": message.html,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Email delivery failed: {e}") from e

    def safe_send(self, message: EmailMessage) -> bool:
        """Send and swallow delivery errors. Returns whether the email went out."""
        if not message.to:
            return False
        try:
            self.send(message)
            return True
        except Exception:
            logger.warning("Failed to send %r email", message.subject, exc_info=True)
            return False

    # ==================== WITHDRAWAL EVENTS ====================

    def withdrawal_requested(self, request: WithdrawalRequest) -> None:
        if self.settings.admin_email:
            self.safe_send(admin_notification(request, self.settings.admin_email, self.settings.app_url))
        if request.user_email:
            self.safe_send(user_confirmation(request, self.settings.app_url))

    def withdrawal_processed(self, request: WithdrawalRequest) -> None:
        if request.user_email:
            self.safe_send(status_update(request, self.settings.app_url))

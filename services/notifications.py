"""
E-mail notifications for payments, commissions and payouts.

Messages go out over SMTP; the blocking send runs in the default executor.
Without SMTP credentials the notifier only logs what it would have sent.
"""
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Optional

from api.config import settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """Notification kinds."""
    PAYMENT_SUCCESS = "payment_success"
    COMMISSION_EARNED = "commission_earned"
    PAYOUT_REQUESTED = "payout_requested"
    PAYOUT_PROCESSED = "payout_processed"


def _naira(amount) -> str:
    return f"₦{int(amount or 0):,}"


def render(kind: NotificationKind, payload: dict) -> tuple[str, str]:
    """Build (subject, plain text body) for a notification."""
    name = payload.get("name") or "there"
    if kind == NotificationKind.PAYMENT_SUCCESS:
        lines = [
            f"- {i.get('subject')} (Grade {i.get('grade')}{', ' + i['term'] if i.get('term') else ''})"
            for i in payload.get("items", [])
        ]
        return (
            "Payment received - your subjects are unlocked",
            f"Hi {name},\n\nWe received your payment of {_naira(payload.get('amount'))} "
            f"(reference {payload.get('reference')}).\n\n" + "\n".join(lines),
        )
    if kind == NotificationKind.COMMISSION_EARNED:
        return (
            "You earned a referral commission",
            f"Hi {name},\n\n{payload.get('referred_email')} just paid "
            f"{_naira(payload.get('amount_paid'))}. Your commission: "
            f"{_naira(payload.get('commission'))}.\n"
            f"Pending earnings: {_naira(payload.get('pending_earnings'))}.",
        )
    if kind == NotificationKind.PAYOUT_REQUESTED:
        return (
            f"Payout request {payload.get('batch_id')}",
            f"Referrer {payload.get('referrer_email')} (id {payload.get('referrer_id')}) requested "
            f"a payout of {_naira(payload.get('amount'))} for {payload.get('count')} transaction(s).\n"
            f"Bank: {payload.get('bank_name')} {payload.get('account_number')} "
            f"({payload.get('account_name') or '-'})",
        )
    if kind == NotificationKind.PAYOUT_PROCESSED:
        return (
            "Your referral payout has been processed",
            f"Hi {name},\n\nWe paid out {_naira(payload.get('amount'))} "
            f"(batch {payload.get('batch_id')}) to {payload.get('bank_name')} "
            f"{payload.get('account_number')}.",
        )
    raise ValueError(f"Unknown notification kind: {kind}")


class Notifier:
    """Pluggable notification sender."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        email_from: Optional[str] = None,
    ):
        self.smtp_host = smtp_host or settings.smtp_host
        self.smtp_port = smtp_port or settings.smtp_port
        self.smtp_user = smtp_user if smtp_user is not None else settings.smtp_user
        self.smtp_password = smtp_password if smtp_password is not None else settings.smtp_password
        self.email_from = email_from or settings.email_from

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    async def send(self, kind: NotificationKind, recipient: str, payload: dict) -> None:
        """Send one notification. Raises on delivery failure."""
        subject, body = render(kind, payload)
        if not self.enabled:
            logger.info(f"[test mode] {kind.value} -> {recipient}: {subject}")
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_email, recipient, subject, body)
        logger.info(f"Notification {kind.value} sent to {recipient}")

    def _send_email(self, recipient: str, subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = recipient
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.email_from, [recipient], msg.as_string())


async def notify_safely(
    notifier: Optional[Notifier],
    kind: NotificationKind,
    recipient: Optional[str],
    payload: dict,
) -> bool:
    """Send a notification; failures are logged and never propagated."""
    if notifier is None or not recipient:
        return False
    try:
        await notifier.send(kind, recipient, payload)
        return True
    except Exception as e:
        logger.error(f"Failed to send {kind.value} notification to {recipient}: {e}", exc_info=True)
        return False

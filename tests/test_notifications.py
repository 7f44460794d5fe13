"""Tests for e-mail notifications."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.notifications import Notifier, NotificationKind, notify_safely, render


def test_render_every_kind():
    payload = {
        "name": "Tunde",
        "amount": 5000,
        "reference": "PSK_1",
        "items": [{"subject": "Mathematics", "grade": "JSS1", "term": "First Term"}],
        "referred_email": "ada@example.com",
        "amount_paid": 5000,
        "commission": 500,
        "pending_earnings": 500,
        "batch_id": "PAYOUT_1_2_abc",
        "count": 1,
        "bank_name": "GTBank",
        "account_number": "0123456789",
    }
    for kind in NotificationKind:
        subject, body = render(kind, payload)
        assert subject
        assert body

    subject, body = render(NotificationKind.COMMISSION_EARNED, payload)
    assert "₦500" in body
    assert "ada@example.com" in body


@pytest.mark.asyncio
async def test_send_without_credentials_only_logs():
    notifier = Notifier(smtp_user="", smtp_password="")
    assert notifier.enabled is False

    with patch("services.notifications.smtplib.SMTP") as smtp:
        await notifier.send(NotificationKind.PAYMENT_SUCCESS, "ada@example.com", {"amount": 5000})

    smtp.assert_not_called()


@pytest.mark.asyncio
async def test_send_over_smtp():
    notifier = Notifier(
        smtp_host="smtp.test",
        smtp_port=587,
        smtp_user="bot@mindsta.com",
        smtp_password="secret",
        email_from="Mindsta <bot@mindsta.com>",
    )
    server = MagicMock()

    with patch("services.notifications.smtplib.SMTP") as smtp:
        smtp.return_value.__enter__.return_value = server
        await notifier.send(NotificationKind.PAYOUT_PROCESSED, "tunde@example.com", {"amount": 800})

    smtp.assert_called_once_with("smtp.test", 587, timeout=10)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot@mindsta.com", "secret")
    from_addr, to_addrs, message = server.sendmail.call_args.args
    assert to_addrs == ["tunde@example.com"]
    assert "Subject: Your referral payout has been processed" in message


@pytest.mark.asyncio
async def test_notify_safely_swallows_errors():
    notifier = MagicMock()
    notifier.send = AsyncMock(side_effect=ConnectionError("boom"))

    assert await notify_safely(notifier, NotificationKind.PAYMENT_SUCCESS, "a@b.c", {}) is False
    assert await notify_safely(None, NotificationKind.PAYMENT_SUCCESS, "a@b.c", {}) is False
    assert await notify_safely(notifier, NotificationKind.PAYMENT_SUCCESS, None, {}) is False
    notifier.send.assert_awaited_once()

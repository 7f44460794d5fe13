"""Tests for payment initiation, verification and webhook reconciliation."""
import json

import pytest
from sqlalchemy import select, func

from core.dto import InitializePaymentDTO
from core.exceptions import AuthenticationError, PaymentNotFoundError, UpstreamError, ValidationError
from database.models import (
    Cart,
    Enrollment,
    Payment,
    PaymentStatus,
    Referral,
    ReferralProfile,
    ReferralStatus,
    ReferralTransaction,
    Student,
    User,
)
from database.repositories import PaymentRepository
from services.notifications import NotificationKind
from services.payment import PaymentService, generate_reference, map_gateway_status
from services.paystack_service import PaystackService
from tests.conftest import CART_ITEMS, WEBHOOK_SECRET


async def count_rows(session_maker, model, *where) -> int:
    async with session_maker() as session:
        query = select(func.count(model.id))
        if where:
            query = query.where(*where)
        return (await session.execute(query)).scalar()


async def fetch_one(session_maker, model, *where):
    async with session_maker() as session:
        return (await session.execute(select(model).where(*where))).scalar_one_or_none()


async def start_checkout(session_maker, gateway, notifier, user) -> str:
    async with session_maker() as session:
        service = PaymentService(session, gateway=gateway, notifier=notifier)
        result = await service.initialize_payment(user.id, user.email, InitializePaymentDTO(amount=5000))
    return result["reference"]


def signed(event: dict) -> tuple[bytes, str]:
    body = json.dumps(event).encode()
    return body, PaystackService.compute_signature(body, WEBHOOK_SECRET)


# ========== Initiation ==========

def test_generate_reference_format():
    reference = generate_reference(42)
    prefix, millis, user_id, suffix = reference.split("_")
    assert prefix == "PSK"
    assert millis.isdigit()
    assert user_id == "42"
    assert len(suffix) == 6
    assert suffix.isalnum() and suffix.lower() == suffix


def test_map_gateway_status():
    assert map_gateway_status("success") == PaymentStatus.SUCCESS
    assert map_gateway_status("failed") == PaymentStatus.FAILED
    assert map_gateway_status("reversed") == PaymentStatus.FAILED
    assert map_gateway_status("abandoned") == PaymentStatus.ABANDONED
    assert map_gateway_status("ongoing") == PaymentStatus.PENDING
    assert map_gateway_status(None) == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_initialize_payment_falls_back_to_cart(session_maker, gateway, student_user):
    """Items omitted from the request are taken from the cart."""
    async with session_maker() as session:
        service = PaymentService(session, gateway=gateway)
        result = await service.initialize_payment(
            student_user.id, student_user.email, InitializePaymentDTO(amount=5000)
        )

    assert result["authorization_url"] == "https://checkout.paystack.test/abc"
    assert result["access_code"] == "AC_abc"
    assert result["reference"].startswith("PSK_")

    kwargs = gateway.initialize.await_args.kwargs
    assert kwargs["amount_minor"] == 500000
    assert kwargs["email"] == "ada@example.com"
    assert kwargs["reference"] == result["reference"]

    payment = await fetch_one(session_maker, Payment, Payment.reference == result["reference"])
    assert payment.status == PaymentStatus.PENDING.value
    assert payment.amount == 5000
    assert payment.items == CART_ITEMS
    assert payment.student_id is not None
    assert payment.raw_initialize["access_code"] == "AC_abc"


@pytest.mark.asyncio
async def test_initialize_payment_rejects_empty_cart(session_maker, gateway):
    async with session_maker() as session:
        user = User(email="empty@example.com")
        session.add(user)
        await session.commit()

        service = PaymentService(session, gateway=gateway)
        with pytest.raises(ValidationError):
            await service.initialize_payment(user.id, user.email, InitializePaymentDTO(amount=1000))

    gateway.initialize.assert_not_awaited()
    assert await count_rows(session_maker, Payment) == 0


@pytest.mark.asyncio
async def test_initialize_payment_rejects_non_positive_amount(session_maker, gateway, student_user):
    data = InitializePaymentDTO.model_construct(amount=0, items=[], callback_url=None)
    async with session_maker() as session:
        with pytest.raises(ValidationError):
            await PaymentService(session, gateway=gateway).initialize_payment(student_user.id, None, data)
    gateway.initialize.assert_not_awaited()


@pytest.mark.asyncio
async def test_initialize_payment_gateway_error_creates_nothing(session_maker, gateway, student_user):
    gateway.initialize.side_effect = UpstreamError("Invalid key", payload={"status": False})

    async with session_maker() as session:
        with pytest.raises(UpstreamError) as exc:
            await PaymentService(session, gateway=gateway).initialize_payment(
                student_user.id, student_user.email, InitializePaymentDTO(amount=5000)
            )

    assert exc.value.message == "Invalid key"
    assert await count_rows(session_maker, Payment) == 0


# ========== Verification ==========

@pytest.mark.asyncio
async def test_verify_success_runs_full_bundle(session_maker, gateway, notifier, student_user, referrer_user, referral):
    """5000 paid by a referred student -> 2 enrollments, commission 500."""
    reference = await start_checkout(session_maker, gateway, notifier, student_user)

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(
            reference, student_user.id
        )

    assert result["status"] == "success"
    assert result["amount"] == 5000
    assert result["paid_at"] is not None
    assert {e["subject"] for e in result["enrollments"]} == {"Mathematics", "English"}

    assert await count_rows(session_maker, Enrollment, Enrollment.user_id == student_user.id) == 2
    cart = await fetch_one(session_maker, Cart, Cart.user_id == student_user.id)
    assert cart.items == []
    student = await fetch_one(session_maker, Student, Student.user_id == student_user.id)
    assert student.is_paid is True

    tx = await fetch_one(session_maker, ReferralTransaction, ReferralTransaction.referrer_id == referrer_user.id)
    assert tx.commission_amount == 500
    assert tx.amount_paid == 5000
    assert tx.status == "pending"

    profile = await fetch_one(session_maker, ReferralProfile, ReferralProfile.user_id == referrer_user.id)
    assert profile.total_earnings == 500
    assert profile.pending_earnings == 500
    assert profile.paid_out_earnings == 0

    updated = await fetch_one(session_maker, Referral, Referral.id == referral.id)
    assert updated.status == ReferralStatus.COMPLETED.value
    assert updated.reward_amount == 500
    assert updated.referred_user_id == student_user.id

    kinds = [call.args[0] for call in notifier.send.await_args_list]
    assert NotificationKind.PAYMENT_SUCCESS in kinds
    assert NotificationKind.COMMISSION_EARNED in kinds
    assert kinds[-1] == NotificationKind.PAYMENT_SUCCESS


@pytest.mark.asyncio
async def test_verify_is_idempotent(session_maker, gateway, notifier, student_user, referrer_user, referral):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)

    for _ in range(3):
        async with session_maker() as session:
            result = await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(
                reference, student_user.id
            )
        assert result["status"] == "success"

    assert await count_rows(session_maker, ReferralTransaction) == 1
    assert await count_rows(session_maker, Enrollment) == 2
    profile = await fetch_one(session_maker, ReferralProfile, ReferralProfile.user_id == referrer_user.id)
    assert profile.total_earnings == 500
    assert profile.pending_earnings == 500
    payment_mails = [
        call for call in notifier.send.await_args_list if call.args[0] == NotificationKind.PAYMENT_SUCCESS
    ]
    assert len(payment_mails) == 1


@pytest.mark.asyncio
async def test_each_purchase_of_referred_user_earns(session_maker, gateway, notifier, student_user, referrer_user, referral):
    for _ in range(2):
        reference = await start_checkout(session_maker, gateway, notifier, student_user)
        async with session_maker() as session:
            await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(reference, student_user.id)

    assert await count_rows(session_maker, ReferralTransaction) == 2
    profile = await fetch_one(session_maker, ReferralProfile, ReferralProfile.user_id == referrer_user.id)
    assert profile.pending_earnings == 1000
    assert profile.total_earnings == 1000


@pytest.mark.asyncio
async def test_verify_unknown_reference(session_maker, gateway, student_user):
    async with session_maker() as session:
        with pytest.raises(PaymentNotFoundError):
            await PaymentService(session, gateway=gateway).verify_payment("PSK_missing", student_user.id)
    gateway.verify.assert_not_awaited()


@pytest.mark.asyncio
async def test_verify_other_users_payment_not_found(session_maker, gateway, notifier, student_user, referrer_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    async with session_maker() as session:
        with pytest.raises(PaymentNotFoundError):
            await PaymentService(session, gateway=gateway).verify_payment(reference, referrer_user.id)


@pytest.mark.asyncio
async def test_verify_failed_then_abandoned_keeps_failed(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)

    gateway.verify.return_value = {"status": "failed"}
    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway).verify_payment(reference, student_user.id)
    assert result["status"] == "failed"
    assert result["enrollments"] == []

    gateway.verify.return_value = {"status": "abandoned"}
    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway).verify_payment(reference, student_user.id)
    assert result["status"] == "failed"
    assert await count_rows(session_maker, Enrollment) == 0


@pytest.mark.asyncio
async def test_verify_pending_status_stays_pending(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    gateway.verify.return_value = {"status": "ongoing"}

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway).verify_payment(reference, student_user.id)

    assert result["status"] == "pending"
    payment = await fetch_one(session_maker, Payment, Payment.reference == reference)
    assert payment.raw_verify == {"status": "ongoing"}


@pytest.mark.asyncio
async def test_verify_gateway_error_is_recorded(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    gateway.verify.side_effect = UpstreamError("Transaction reference not found", payload={"status": False})

    async with session_maker() as session:
        with pytest.raises(UpstreamError):
            await PaymentService(session, gateway=gateway).verify_payment(reference, student_user.id)

    payment = await fetch_one(session_maker, Payment, Payment.reference == reference)
    assert payment.status == PaymentStatus.PENDING.value
    assert payment.raw_verify == {"status": False}


@pytest.mark.asyncio
async def test_success_without_referral_credits_nobody(session_maker, gateway, notifier, student_user, referrer_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(
            reference, student_user.id
        )

    assert result["status"] == "success"
    assert await count_rows(session_maker, ReferralTransaction) == 0
    profile = await fetch_one(session_maker, ReferralProfile, ReferralProfile.user_id == referrer_user.id)
    assert profile.total_earnings == 0


@pytest.mark.asyncio
async def test_bad_item_does_not_block_other_enrollments(session_maker, gateway, notifier, student_user, referrer_user, referral):
    async with session_maker() as session:
        await PaymentRepository(session).create(
            user_id=student_user.id,
            amount=3000,
            reference="PSK_partial_1",
            items=[
                {"subject": "Basic Science", "grade": "JSS2", "term": "", "price": 3000},
                {"grade": "JSS2"},
            ],
        )
        await session.commit()

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(
            "PSK_partial_1", student_user.id
        )

    assert result["status"] == "success"
    assert result["enrollments"] == [{"subject": "Basic Science", "grade": "JSS2", "term": ""}]
    assert await count_rows(session_maker, Enrollment) == 1
    # Commission is still attributed
    tx = await fetch_one(session_maker, ReferralTransaction, ReferralTransaction.referrer_id == referrer_user.id)
    assert tx.commission_amount == 300


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_payment(session_maker, gateway, notifier, student_user):
    notifier.send.side_effect = RuntimeError("SMTP down")
    reference = await start_checkout(session_maker, gateway, notifier, student_user)

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(
            reference, student_user.id
        )

    assert result["status"] == "success"
    assert await count_rows(session_maker, Enrollment) == 2


# ========== Webhook ==========

@pytest.mark.asyncio
async def test_webhook_charge_success(session_maker, gateway, notifier, student_user, referrer_user, referral):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    body, signature = signed({
        "event": "charge.success",
        "data": {"reference": reference, "status": "success", "paid_at": "2026-10-02T08:30:00Z"},
    })

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway, notifier=notifier).process_webhook(body, signature)

    assert result == {"received": True}
    payment = await fetch_one(session_maker, Payment, Payment.reference == reference)
    assert payment.status == PaymentStatus.SUCCESS.value
    assert payment.paid_at.day == 2
    assert payment.raw_verify["event"] == "charge.success"
    assert await count_rows(session_maker, ReferralTransaction) == 1
    gateway.verify.assert_not_awaited()


@pytest.mark.asyncio
async def test_webhook_after_poll_does_not_double_credit(session_maker, gateway, notifier, student_user, referrer_user, referral):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    async with session_maker() as session:
        await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(reference, student_user.id)

    body, signature = signed({"event": "charge.success", "data": {"reference": reference}})
    async with session_maker() as session:
        await PaymentService(session, gateway=gateway, notifier=notifier).process_webhook(body, signature)

    assert await count_rows(session_maker, ReferralTransaction) == 1
    profile = await fetch_one(session_maker, ReferralProfile, ReferralProfile.user_id == referrer_user.id)
    assert profile.total_earnings == 500


@pytest.mark.asyncio
async def test_duplicate_success_keeps_original_verify_payload(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    async with session_maker() as session:
        await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(reference, student_user.id)

    body, signature = signed({"event": "charge.success", "data": {"reference": reference, "channel": "bank"}})
    async with session_maker() as session:
        await PaymentService(session, gateway=gateway, notifier=notifier).process_webhook(body, signature)

    gateway.verify.side_effect = UpstreamError("Gateway timeout")
    async with session_maker() as session:
        with pytest.raises(UpstreamError):
            await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(reference, student_user.id)

    payment = await fetch_one(session_maker, Payment, Payment.reference == reference)
    assert payment.status == PaymentStatus.SUCCESS.value
    assert payment.channel == "card"
    assert payment.raw_verify == {
        "status": "success",
        "paid_at": "2026-10-01T10:00:00.000Z",
        "channel": "card",
    }


@pytest.mark.asyncio
async def test_webhook_bad_signature_changes_nothing(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    body, _ = signed({"event": "charge.success", "data": {"reference": reference}})

    for signature in (None, "", "deadbeef"):
        async with session_maker() as session:
            with pytest.raises(AuthenticationError):
                await PaymentService(session, gateway=gateway).process_webhook(body, signature)

    payment = await fetch_one(session_maker, Payment, Payment.reference == reference)
    assert payment.status == PaymentStatus.PENDING.value
    assert await count_rows(session_maker, Enrollment) == 0


@pytest.mark.asyncio
async def test_webhook_unknown_reference_is_acknowledged(session_maker, gateway):
    body, signature = signed({"event": "charge.success", "data": {"reference": "PSK_nope"}})
    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway).process_webhook(body, signature)

    assert result == {"received": True}
    assert await count_rows(session_maker, Payment) == 0
    assert await count_rows(session_maker, Enrollment) == 0


@pytest.mark.asyncio
async def test_webhook_other_events_are_ignored(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)
    body, signature = signed({"event": "transfer.success", "data": {"reference": reference}})

    async with session_maker() as session:
        result = await PaymentService(session, gateway=gateway).process_webhook(body, signature)

    assert result == {"received": True}
    payment = await fetch_one(session_maker, Payment, Payment.reference == reference)
    assert payment.status == PaymentStatus.PENDING.value


# ========== Queries ==========

@pytest.mark.asyncio
async def test_payment_status(session_maker, gateway, notifier, student_user):
    reference = await start_checkout(session_maker, gateway, notifier, student_user)

    async with session_maker() as session:
        status = await PaymentService(session, gateway=gateway).get_status(student_user.id)
    assert status["is_paid"] is False
    assert status["latest_payment"]["reference"] == reference

    async with session_maker() as session:
        await PaymentService(session, gateway=gateway, notifier=notifier).verify_payment(reference, student_user.id)
    async with session_maker() as session:
        status = await PaymentService(session, gateway=gateway).get_status(student_user.id)
    assert status["is_paid"] is True
    assert status["latest_payment"]["status"] == "success"

"""
Payment service: initiation, verification and webhook reconciliation.

A payment becomes successful through a single conditional UPDATE, so the
post-success bundle (enrollments, cart, student flag, payer e-mail,
referral commission) runs once no matter how many poll and webhook
deliveries race for the same reference.
"""
import json
import logging
import random
import string
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from api.config import settings
from core.dto import CartItemDTO, InitializePaymentDTO, PaidPayment
from core.exceptions import (
    AuthenticationError,
    ConsistencyWarning,
    PaymentNotFoundError,
    UpstreamError,
    ValidationError,
)
from database.models import Payment, PaymentStatus
from database.repositories import (
    CartRepository,
    PaymentRepository,
    StudentRepository,
    UserRepository,
)
from services.enrollment import EnrollmentService
from services.notifications import Notifier, NotificationKind, notify_safely
from services.paystack_service import PaystackService
from services.referral import ReferralService

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

GATEWAY_STATUS_MAP = {
    'success': PaymentStatus.SUCCESS,
    'failed': PaymentStatus.FAILED,
    'reversed': PaymentStatus.FAILED,
    'abandoned': PaymentStatus.ABANDONED,
}


def generate_reference(user_id: int) -> str:
    """PSK_<epoch ms>_<user id>_<6 random base36 chars>."""
    suffix = ''.join(random.choices(_BASE36, k=6))
    return f"PSK_{int(time.time() * 1000)}_{user_id}_{suffix}"


def map_gateway_status(status: Optional[str]) -> PaymentStatus:
    return GATEWAY_STATUS_MAP.get((status or '').lower(), PaymentStatus.PENDING)


def parse_paid_at(value: Optional[str]) -> datetime:
    """Gateway timestamps are ISO-8601 with a trailing Z; fall back to now."""
    if value:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Unparseable paid_at from gateway: {value!r}")
    return datetime.now(timezone.utc)


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        'id': payment.id,
        'user_id': payment.user_id,
        'reference': payment.reference,
        'amount': payment.amount,
        'currency': payment.currency,
        'status': payment.status,
        'channel': payment.channel,
        'items': payment.items or [],
        'paid_at': payment.paid_at.isoformat() if payment.paid_at else None,
        'created_at': payment.created_at.isoformat() if payment.created_at else None,
    }


class PaymentService:
    """Service for payment operations."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[PaystackService] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.session = session
        self.gateway = gateway or PaystackService()
        self.notifier = notifier
        self.payment_repo = PaymentRepository(session)
        self.user_repo = UserRepository(session)
        self.student_repo = StudentRepository(session)
        self.cart_repo = CartRepository(session)
        self.enrollment_service = EnrollmentService(session)
        self.referral_service = ReferralService(session, notifier)

    # ========== Initiation ==========

    async def initialize_payment(
        self,
        user_id: int,
        email: Optional[str],
        data: InitializePaymentDTO,
    ) -> Dict[str, str]:
        """
        Start a gateway transaction for the caller's cart.

        Returns:
            Dict with authorization_url, access_code and reference

        Raises:
            ValidationError: non-positive amount or nothing to buy
            UpstreamError: gateway refused or was unreachable
        """
        if data.amount <= 0:
            raise ValidationError("Invalid amount")

        items = [item.model_dump() for item in data.items]
        if not items:
            try:
                items = [
                    CartItemDTO.model_validate(item).model_dump()
                    for item in await self.cart_repo.get_items(user_id)
                ]
            except PydanticValidationError as e:
                raise ValidationError("Cart contains invalid items") from e
        if not items:
            raise ValidationError("Cart is empty")

        user = await self.user_repo.get_by_id(user_id)
        payer_email = user.email if user else email
        if not payer_email:
            raise ValidationError("User e-mail is required")

        reference = generate_reference(user_id)
        callback_url = data.callback_url or settings.paystack_callback_url
        gateway_data = await self.gateway.initialize(
            email=payer_email,
            amount_minor=data.amount * settings.minor_unit_factor,
            reference=reference,
            callback_url=callback_url,
            metadata={'user_id': user_id, 'items': items},
        )

        student = await self.student_repo.get_by_user_id(user_id)
        await self.payment_repo.create(
            user_id=user_id,
            student_id=student.id if student else None,
            amount=data.amount,
            currency=settings.default_currency,
            reference=reference,
            items=items,
            status=PaymentStatus.PENDING,
            authorization_url=gateway_data.get('authorization_url'),
            access_code=gateway_data.get('access_code'),
            raw_initialize=gateway_data,
        )
        await self.session.commit()

        logger.info(
            f"Payment initialized: {reference} for user {user_id}, amount {data.amount}",
            extra={"user_id": user_id, "reference": reference},
        )
        return {
            'authorization_url': gateway_data.get('authorization_url'),
            'access_code': gateway_data.get('access_code'),
            'reference': reference,
        }

    # ========== Verification ==========

    async def verify_payment(self, reference: str, user_id: int) -> Dict[str, Any]:
        """
        Ask the gateway for the outcome of the caller's payment and apply it.

        Raises:
            PaymentNotFoundError: no such reference for this user
            UpstreamError: gateway failure (its payload is still recorded)
        """
        payment = await self.payment_repo.get_by_reference(reference, user_id=user_id)
        if not payment:
            raise PaymentNotFoundError(reference)

        snapshot = await self._snapshot(payment)

        try:
            gateway_data = await self.gateway.verify(reference)
        except UpstreamError as e:
            await self.payment_repo.save_raw_verify(payment.id, e.payload or {'message': e.message})
            await self.session.commit()
            raise

        await self.payment_repo.save_raw_verify(payment.id, gateway_data)
        status = map_gateway_status(gateway_data.get('status'))
        paid_at = parse_paid_at(gateway_data.get('paid_at') or gateway_data.get('paidAt'))
        enrollments = await self._apply_status(
            snapshot, status, paid_at, channel=gateway_data.get('channel')
        )

        await self.session.refresh(payment)
        if enrollments is None and payment.status == PaymentStatus.SUCCESS.value:
            enrollments = [
                {'subject': i.get('subject'), 'grade': str(i.get('grade')), 'term': i.get('term') or ''}
                for i in payment.items or []
            ]
        return {
            'status': payment.status,
            'paid_at': payment.paid_at.isoformat() if payment.paid_at else None,
            'amount': payment.amount,
            'reference': payment.reference,
            'enrollments': enrollments or [],
        }

    async def process_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, bool]:
        """
        Handle a gateway event.

        The signature is checked before anything else; a bad one changes
        nothing. Unknown references and non-charge events are acknowledged.
        """
        if not PaystackService.verify_signature(raw_body, signature, self.gateway.secret_key):
            logger.warning("Webhook rejected: invalid signature")
            raise AuthenticationError("Invalid signature")

        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError("Malformed webhook body") from e

        event_type = event.get('event')
        data = event.get('data') or {}
        if event_type != 'charge.success':
            logger.info(f"Webhook event ignored: {event_type}")
            return {'received': True}

        reference = data.get('reference')
        payment = await self.payment_repo.get_by_reference(reference) if reference else None
        if not payment:
            logger.warning(f"Webhook for unknown reference {reference}", extra={"reference": reference})
            return {'received': True}

        snapshot = await self._snapshot(payment)
        await self._apply_status(
            snapshot,
            PaymentStatus.SUCCESS,
            parse_paid_at(data.get('paid_at') or data.get('paidAt')),
            channel=data.get('channel'),
            raw_verify=event,
        )
        return {'received': True}

    async def _snapshot(self, payment: Payment) -> PaidPayment:
        user = await self.user_repo.get_by_id(payment.user_id)
        return PaidPayment(
            id=payment.id,
            user_id=payment.user_id,
            student_id=payment.student_id,
            amount=payment.amount,
            reference=payment.reference,
            items=list(payment.items or []),
            email=user.email if user else None,
            name=user.display_name if user else None,
        )

    async def _apply_status(
        self,
        snapshot: PaidPayment,
        status: PaymentStatus,
        paid_at: datetime,
        channel: Optional[str] = None,
        raw_verify: Optional[dict] = None,
    ) -> Optional[list]:
        """
        Persist a gateway outcome; returns materialized enrollments when this
        call performed the success transition, otherwise None.
        """
        if status == PaymentStatus.SUCCESS:
            transitioned = await self.payment_repo.mark_success(snapshot.id, paid_at, channel, raw_verify)
            await self.session.commit()
            if not transitioned:
                logger.info(f"Payment {snapshot.reference} already successful", extra={"reference": snapshot.reference})
                return None
            logger.info(
                f"Payment {snapshot.reference} succeeded",
                extra={"user_id": snapshot.user_id, "reference": snapshot.reference},
            )
            paid = replace(snapshot, paid_at=paid_at)
            return await self.run_post_success(paid)

        if await self.payment_repo.set_status(snapshot.id, status):
            logger.info(f"Payment {snapshot.reference} is {status.value}", extra={"reference": snapshot.reference})
        await self.session.commit()
        return None

    # ========== Post-success bundle ==========

    async def _best_effort(self, step: str, paid: PaidPayment, action: Callable[[], Awaitable[Any]]) -> Any:
        """Run one side effect; a failure is rolled back and logged, never raised."""
        try:
            result = await action()
            await self.session.commit()
            return result
        except Exception as e:
            await self.session.rollback()
            warning = ConsistencyWarning(f"{step} failed for payment {paid.reference}: {e}", step=step)
            logger.warning(
                warning.message,
                exc_info=True,
                extra={"user_id": paid.user_id, "reference": paid.reference},
            )
            return None

    async def run_post_success(self, paid: PaidPayment) -> list:
        """Enrollments, cart, student flag, referral commission, then payer e-mail."""
        enrollments = await self._best_effort(
            "enrollment", paid, lambda: self.enrollment_service.materialize(paid)
        ) or []
        await self._best_effort("cart clear", paid, lambda: self.enrollment_service.clear_cart(paid.user_id))
        await self._best_effort("student flag", paid, lambda: self.student_repo.mark_paid(paid.user_id))
        await self._best_effort("referral attribution", paid, lambda: self.referral_service.attribute_commission(paid))
        await notify_safely(
            self.notifier,
            NotificationKind.PAYMENT_SUCCESS,
            paid.email,
            {
                'name': paid.name,
                'amount': paid.amount,
                'reference': paid.reference,
                'items': enrollments or paid.items,
            },
        )
        return enrollments

    # ========== Queries ==========

    async def get_status(self, user_id: int) -> Dict[str, Any]:
        """Whether the caller has ever paid, plus their latest payment."""
        student = await self.student_repo.get_by_user_id(user_id)
        latest = await self.payment_repo.get_latest_for_user(user_id)
        is_paid = bool(student and student.is_paid) or bool(
            latest and latest.status == PaymentStatus.SUCCESS.value
        )
        return {
            'is_paid': is_paid,
            'latest_payment': payment_to_dict(latest) if latest else None,
        }

    async def list_recent(self, limit: int = 200) -> list[Dict[str, Any]]:
        return [payment_to_dict(p) for p in await self.payment_repo.list_recent(limit)]

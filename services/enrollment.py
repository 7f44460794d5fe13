"""Enrollment materialization after a successful payment."""
import logging
from typing import List, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from core.dto import PaidPayment
from database.repositories import EnrollmentRepository, CartRepository

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Turns the items of a paid payment into durable access."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.enrollment_repo = EnrollmentRepository(session)
        self.cart_repo = CartRepository(session)

    async def materialize(self, payment: PaidPayment) -> List[Dict[str, str]]:
        """
        Upsert one enrollment per purchased item.

        Each item is committed on its own; a failing item is logged and
        skipped so the rest of the cart is still granted.

        Returns:
            The (subject, grade, term) triples that were materialized
        """
        materialized = []
        for item in payment.items:
            subject = item.get('subject')
            grade = item.get('grade')
            term = item.get('term') or ''
            try:
                if not subject or grade is None:
                    raise ValueError(f"incomplete item {item!r}")
                await self.enrollment_repo.upsert(
                    user_id=payment.user_id,
                    subject=subject,
                    grade=str(grade),
                    term=term,
                    payment_id=payment.id,
                    purchase_price=int(item.get('price') or 0),
                    purchased_at=payment.paid_at,
                )
                await self.session.commit()
                materialized.append({'subject': subject, 'grade': str(grade), 'term': term})
            except Exception as e:
                await self.session.rollback()
                logger.error(
                    f"Enrollment failed for payment {payment.reference}, item {item!r}: {e}",
                    extra={"user_id": payment.user_id, "reference": payment.reference},
                )

        logger.info(
            f"Materialized {len(materialized)}/{len(payment.items)} enrollments for {payment.reference}",
            extra={"user_id": payment.user_id, "reference": payment.reference},
        )
        return materialized

    async def clear_cart(self, user_id: int) -> bool:
        """Empty the buyer's cart."""
        cleared = await self.cart_repo.clear(user_id)
        await self.session.commit()
        return cleared

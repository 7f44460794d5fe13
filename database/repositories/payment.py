"""Payment repository for database operations."""
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, update

from database.models import Payment, PaymentStatus
from database.repositories.base import BaseRepository

NON_TERMINAL = (PaymentStatus.INITIALIZED.value, PaymentStatus.PENDING.value)


class PaymentRepository(BaseRepository[Payment]):
    """Repository for Payment model operations."""

    model_class = Payment

    async def create(
        self,
        user_id: int,
        amount: int,
        reference: str,
        items: list[dict],
        currency: str = "NGN",
        student_id: Optional[int] = None,
        status: PaymentStatus = PaymentStatus.PENDING,
        authorization_url: Optional[str] = None,
        access_code: Optional[str] = None,
        raw_initialize: Optional[dict] = None,
    ) -> Payment:
        """Create new payment record."""
        payment = Payment(
            user_id=user_id,
            student_id=student_id,
            amount=amount,
            currency=currency,
            reference=reference,
            status=status.value,
            authorization_url=authorization_url,
            access_code=access_code,
            raw_initialize=raw_initialize,
            items=items,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_by_reference(
        self,
        reference: str,
        user_id: Optional[int] = None
    ) -> Optional[Payment]:
        """Get payment by reference, optionally scoped to its owner."""
        query = select(Payment).where(Payment.reference == reference)
        if user_id is not None:
            query = query.where(Payment.user_id == user_id)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def get_latest_for_user(self, user_id: int) -> Optional[Payment]:
        """Get the most recent payment of a user."""
        result = await self.session.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 200) -> List[Payment]:
        """Latest payments, newest first."""
        result = await self.session.execute(
            select(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def save_raw_verify(self, payment_id: int, payload: dict | None) -> None:
        """
        Store the latest gateway verification payload (audit trail).

        A successful payment keeps the payload that moved it to success.
        """
        await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status != PaymentStatus.SUCCESS.value)
            .values(raw_verify=payload)
            .execution_options(synchronize_session=False)
        )

    async def mark_success(
        self,
        payment_id: int,
        paid_at: datetime,
        channel: Optional[str] = None,
        raw_verify: Optional[dict] = None,
    ) -> bool:
        """
        Atomically transition a payment to success.

        Single conditional UPDATE: only the caller that actually moves the row
        out of a non-success state gets True, so concurrent poll/webhook
        deliveries run the post-success effects exactly once.
        """
        values = {"status": PaymentStatus.SUCCESS.value, "paid_at": paid_at}
        if channel:
            values["channel"] = channel
        if raw_verify is not None:
            values["raw_verify"] = raw_verify
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status != PaymentStatus.SUCCESS.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_status(self, payment_id: int, status: PaymentStatus) -> bool:
        """Move a non-terminal payment to another non-success status."""
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status.in_(NON_TERMINAL),
            )
            .values(status=status.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

"""Enrollment repository for database operations."""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func

from database.models import Enrollment
from database.repositories.base import BaseRepository


class EnrollmentRepository(BaseRepository[Enrollment]):
    """Repository for Enrollment model operations."""

    model_class = Enrollment

    async def upsert(
        self,
        user_id: int,
        subject: str,
        grade: str,
        term: str,
        payment_id: int,
        purchase_price: int,
        purchased_at: Optional[datetime],
    ) -> None:
        """
        Insert or refresh the enrollment for (user, subject, grade, term).

        A repeat purchase updates payment, price and date in place instead of
        creating a second row.
        """
        stmt = self.upsert_statement().values(
            user_id=user_id,
            subject=subject,
            grade=grade,
            term=term or "",
            payment_id=payment_id,
            purchase_price=purchase_price,
            purchased_at=purchased_at,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "subject", "grade", "term"],
            set_={
                "payment_id": stmt.excluded.payment_id,
                "purchase_price": stmt.excluded.purchase_price,
                "purchased_at": stmt.excluded.purchased_at,
                "is_active": True,
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)

    async def get_one(
        self,
        user_id: int,
        subject: str,
        grade: str,
        term: str = "",
    ) -> Optional[Enrollment]:
        """Get enrollment by natural key."""
        result = await self.session.execute(
            select(Enrollment).where(
                Enrollment.user_id == user_id,
                Enrollment.subject == subject,
                Enrollment.grade == grade,
                Enrollment.term == (term or ""),
            )
        )
        return result.scalar_one_or_none()

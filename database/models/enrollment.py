"""Enrollment model - durable access to one subject/grade/term."""
from datetime import datetime

from sqlalchemy import BigInteger, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class Enrollment(Base):
    """Enrollment model, unique per (user, subject, grade, term)."""

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "subject", "grade", "term", name="uq_enrollments_natural_key"),
        Index("ix_enrollments_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    subject: Mapped[str] = mapped_column(String(100), nullable=False)
    grade: Mapped[str] = mapped_column(String(20), nullable=False)
    # Empty string, not NULL, so the unique key matches term-less items
    term: Mapped[str] = mapped_column(String(50), nullable=False, default="", server_default="")

    payment_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False
    )
    purchase_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchased_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Enrollment(user_id={self.user_id}, subject='{self.subject}', "
            f"grade='{self.grade}', term='{self.term}', active={self.is_active})>"
        )

"""Payment model - one gateway transaction and its cart snapshot."""
from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, String, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class PaymentStatus(str, Enum):
    """Payment status enum."""
    INITIALIZED = "initialized"
    PENDING = "pending"  # Waiting for the payer at the gateway
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"  # Payer left the checkout page

    @classmethod
    def terminal(cls) -> tuple["PaymentStatus", ...]:
        return (cls.SUCCESS, cls.FAILED, cls.ABANDONED)

    @property
    def is_terminal(self) -> bool:
        return self in self.terminal()


class Payment(Base):
    """Payment model."""

    __tablename__ = "payments"

    # Primary key
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    student_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="SET NULL"),
        nullable=True
    )

    # Payment details
    amount: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in base currency units")
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    reference: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Gateway reference, globally unique"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.INITIALIZED.value,
        nullable=False,
        index=True
    )

    # Gateway handles
    authorization_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    access_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    channel: Mapped[str | None] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Raw gateway payloads, kept for audit
    raw_initialize: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    raw_verify: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Cart snapshot: [{subject, grade, term, price}]
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    @property
    def is_successful(self) -> bool:
        return self.status == PaymentStatus.SUCCESS.value

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, reference='{self.reference}', "
            f"amount={self.amount}, status='{self.status}')>"
        )

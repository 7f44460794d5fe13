"""Referral models: invitations, referrer ledgers and commission events."""
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger, String, Boolean, Integer, Numeric, ForeignKey, Text, DateTime, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class ReferralStatus(str, Enum):
    """Referral status enum."""
    PENDING = "pending"  # Invited, has not paid yet
    COMPLETED = "completed"  # First successful payment reconciled, commission accrued
    EXPIRED = "expired"  # No payment within the expiration window


class ReferralTransactionStatus(str, Enum):
    """Commission status enum."""
    PENDING = "pending"  # Accrued, waiting for payout
    PAID = "paid"  # Settled in a payout batch


class Referral(Base):
    """Referral tracking model."""

    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_email", name="uq_referrals_referrer_email"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # Referral relationship
    referrer_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="User who referred"
    )
    referred_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Invited e-mail, lowercase"
    )
    referred_user_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Bound once the invitee registers or pays"
    )

    # Status and reward
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferralStatus.PENDING.value,
        index=True,
        comment="pending/completed/expired"
    )
    reward_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Commission earned from this referral"
    )
    reward_claimed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<Referral(id={self.id}, referrer={self.referrer_id}, "
            f"email='{self.referred_email}', status='{self.status}')>"
        )


class ReferralProfile(Base):
    """Earnings ledger of one referrer: total = pending + paid out."""

    __tablename__ = "referral_profiles"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )

    # Payout details
    bank_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    account_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4),
        nullable=False,
        default=Decimal("0.10"),
        comment="Fraction of amount paid, 0.10 = 10%"
    )

    # Ledger
    total_earnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    pending_earnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    paid_out_earnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

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
    def has_bank_details(self) -> bool:
        return bool(self.bank_name and self.account_number)

    def __repr__(self) -> str:
        return (
            f"<ReferralProfile(user_id={self.user_id}, total={self.total_earnings}, "
            f"pending={self.pending_earnings}, paid={self.paid_out_earnings})>"
        )


class ReferralTransaction(Base):
    """One commission event tied to one successful payment."""

    __tablename__ = "referral_transactions"
    __table_args__ = (
        Index("ix_referral_transactions_referrer_created", "referrer_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    referrer_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    referral_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("referrals.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Paying user"
    )
    student_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="SET NULL"),
        nullable=True
    )
    payment_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("payments.id", ondelete="SET NULL"),
        unique=True,
        nullable=True
    )

    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferralTransactionStatus.PENDING.value,
        index=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payout_batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<ReferralTransaction(id={self.id}, referrer={self.referrer_id}, "
            f"commission={self.commission_amount}, status='{self.status}')>"
        )

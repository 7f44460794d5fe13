"""User and Student models - the platform accounts this workflow reads."""
from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, String, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class UserType(str, Enum):
    """User type enum."""
    STUDENT = "student"
    REFERRAL = "referral"  # Affiliate account that earns commissions
    ADMIN = "admin"


class User(Base):
    """Platform user (payer, referrer or admin)."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_type: Mapped[str] = mapped_column(
        String(20),
        default=UserType.STUDENT.value,
        nullable=False
    )
    referral_code: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', type='{self.user_type}')>"


class Student(Base):
    """Learner record attached to a paying user."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True
    )
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Legacy flag: has completed at least one payment
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, user_id={self.user_id}, is_paid={self.is_paid})>"

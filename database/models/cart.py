"""Cart model - the checkout basket consumed by payments."""
from datetime import datetime

from sqlalchemy import BigInteger, Integer, JSON, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from database.base import Base, BigIntPK


class Cart(Base):
    """One cart per user; items is a list of {subject, grade, term, price}."""

    __tablename__ = "carts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Cart(user_id={self.user_id}, items={len(self.items or [])})>"

"""Database models package."""
from database.models.user import User, UserType, Student
from database.models.cart import Cart
from database.models.payment import Payment, PaymentStatus
from database.models.enrollment import Enrollment
from database.models.referral import (
    Referral,
    ReferralStatus,
    ReferralProfile,
    ReferralTransaction,
    ReferralTransactionStatus,
)

__all__ = [
    "User",
    "UserType",
    "Student",
    "Cart",
    "Payment",
    "PaymentStatus",
    "Enrollment",
    "Referral",
    "ReferralStatus",
    "ReferralProfile",
    "ReferralTransaction",
    "ReferralTransactionStatus",
]

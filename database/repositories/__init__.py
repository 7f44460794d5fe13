"""Database repositories."""
from database.repositories.base import BaseRepository
from database.repositories.user import UserRepository, StudentRepository, CartRepository
from database.repositories.payment import PaymentRepository
from database.repositories.enrollment import EnrollmentRepository
from database.repositories.referral import (
    ReferralRepository,
    ReferralProfileRepository,
    ReferralTransactionRepository,
)

__all__ = [
    "BaseRepository",
    "UserRepository",
    "StudentRepository",
    "CartRepository",
    "PaymentRepository",
    "EnrollmentRepository",
    "ReferralRepository",
    "ReferralProfileRepository",
    "ReferralTransactionRepository",
]

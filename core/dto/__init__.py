"""
Data Transfer Objects (DTOs) for data validation.

This package contains Pydantic models for validating request bodies.
"""

from core.dto.payments import (
    CartItemDTO,
    InitializePaymentDTO,
    PaidPayment,
)
from core.dto.referrals import (
    CreateReferralDTO,
    UpdateReferralSettingsDTO,
    PayoutRequestDTO,
)

__all__ = [
    'CartItemDTO',
    'InitializePaymentDTO',
    'PaidPayment',
    'CreateReferralDTO',
    'UpdateReferralSettingsDTO',
    'PayoutRequestDTO',
]

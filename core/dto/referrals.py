"""Referral DTOs for data validation."""
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class CreateReferralDTO(BaseModel):
    """DTO for recording an invitation."""

    referrer_id: int = Field(..., alias="referrerId", description="User who invited")
    referred_email: str = Field(..., alias="referredEmail", min_length=3, max_length=255)

    model_config = {"populate_by_name": True}

    @field_validator('referred_email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("must be an e-mail address")
        return v


class UpdateReferralSettingsDTO(BaseModel):
    """DTO for updating payout details. Omitted fields are left unchanged."""

    bank_name: Optional[str] = Field(None, alias="bankName", max_length=100)
    bank_code: Optional[str] = Field(None, alias="bankCode", max_length=20)
    account_number: Optional[str] = Field(None, alias="accountNumber", max_length=20)
    account_name: Optional[str] = Field(None, alias="accountName", max_length=255)
    commission_rate: Optional[float] = Field(None, alias="commissionRate", ge=0, le=1)

    model_config = {"populate_by_name": True}


class PayoutRequestDTO(BaseModel):
    """Optional admin notes stamped on every transaction of the batch."""

    notes: Optional[str] = Field(None, max_length=500)

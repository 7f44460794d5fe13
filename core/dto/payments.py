"""Payment DTOs for data validation."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class CartItemDTO(BaseModel):
    """One purchased (subject, grade, term) line."""

    subject: str = Field(..., min_length=1, max_length=100, description="Subject name")
    grade: str = Field(..., min_length=1, max_length=20, description="Grade")
    term: str = Field("", max_length=50, description="Term (empty when not term-scoped)")
    price: int = Field(0, ge=0, description="Price in base currency units")

    @field_validator('grade', mode='before')
    @classmethod
    def coerce_grade(cls, v):
        """Grades arrive as numbers from some clients."""
        return str(v) if v is not None else v

    @field_validator('term', mode='before')
    @classmethod
    def normalize_term(cls, v):
        return (v or "").strip()

    @field_validator('subject')
    @classmethod
    def strip_subject(cls, v: str) -> str:
        return v.strip()


class InitializePaymentDTO(BaseModel):
    """DTO for starting a gateway transaction."""

    amount: int = Field(..., gt=0, description="Amount in base currency units")
    items: List[CartItemDTO] = Field(default_factory=list, description="Cart snapshot")
    callback_url: Optional[str] = Field(None, alias="callbackUrl", description="Redirect after checkout")

    model_config = {"populate_by_name": True}


@dataclass(frozen=True)
class PaidPayment:
    """Plain snapshot of a payment that just became successful.

    Side effects run after the status commit and may roll back their own
    work, so they read from this snapshot instead of live ORM objects.
    """

    id: int
    user_id: int
    student_id: Optional[int]
    amount: int
    reference: str
    items: List[dict] = field(default_factory=list)
    paid_at: Optional[datetime] = None
    email: Optional[str] = None
    name: Optional[str] = None

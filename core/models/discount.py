"""Discount code domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class DiscountType(str, Enum):
    """How a discount code's value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountCode(BaseModel):
    """Full discount code entity as stored."""

    id: UUID
    code: str
    description: str | None = None
    type: DiscountType
    value: Decimal = Field(..., ge=0)
    min_order_value: Decimal = Field(Decimal("0"), ge=0)
    max_discount: Decimal | None = Field(None, ge=0)  # Percentage type only
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = Field(None, ge=0)  # None = unlimited
    used_count: int = Field(0, ge=0)
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        """Codes are case-insensitive; stored upper-case."""
        return value.strip().upper()

    @property
    def has_remaining_uses(self) -> bool:
        """Whether the usage counter is still below the limit."""
        return self.usage_limit is None or self.used_count < self.usage_limit

    def is_within_window(self, as_of: datetime) -> bool:
        """Whether ``as_of`` falls inside [start_date, end_date]."""
        return self.start_date <= as_of <= self.end_date

    def is_valid(self, order_value: Decimal, as_of: datetime) -> bool:
        """Active, in window, order meets minimum, and uses remain."""
        return (
            self.is_active
            and self.is_within_window(as_of)
            and order_value >= self.min_order_value
            and self.has_remaining_uses
        )

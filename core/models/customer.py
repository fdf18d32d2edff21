"""Customer domain models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class Customer(BaseModel):
    """Full customer entity as stored, including purchase statistics."""

    id: UUID
    name: str
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    is_active: bool = True
    purchase_history: list[UUID] = Field(default_factory=list)
    total_purchases: int = Field(0, ge=0)
    total_spent: Decimal = Field(Decimal("0"), ge=0)
    last_purchase_date: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def has_consistent_history(self) -> bool:
        """Purchase history length matches the purchase counter."""
        return len(self.purchase_history) == self.total_purchases

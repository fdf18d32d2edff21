"""Product (catalog) domain models.

Prices are Decimal with two places. The discount descriptor is a
time-windowed percentage that only applies while active.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class ProductDiscount(BaseModel):
    """Time-bounded percentage discount on a single product."""

    percentage: Decimal = Field(Decimal("0"), ge=0, le=100)
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = False

    def applies_at(self, as_of: datetime) -> bool:
        """Whether the discount is active and ``as_of`` falls in its window."""
        if not self.is_active:
            return False
        if self.start_date is not None and as_of < self.start_date:
            return False
        if self.end_date is not None and as_of > self.end_date:
            return False
        return True


class Product(BaseModel):
    """Full product entity as stored."""

    id: UUID
    sku: str
    name: str
    price: Decimal = Field(..., ge=0)
    quantity: int
    discount: ProductDiscount | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

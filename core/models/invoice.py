"""Invoice domain models.

All amounts are Decimal with two places to avoid floating point drift in
discount math. Line items, applied discount and history are embedded in the
invoice; product, customer and discount are referenced by id only, with the
prices snapshotted at creation time.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from core.models.discount import DiscountType
from core.models.store import BankProfile


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.CONFIRMED, InvoiceStatus.CANCELED}),
    InvoiceStatus.CONFIRMED: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.COMPLETED, InvoiceStatus.REFUNDED}),
    InvoiceStatus.COMPLETED: frozenset({InvoiceStatus.REFUNDED}),
    InvoiceStatus.CANCELED: frozenset(),
    InvoiceStatus.REFUNDED: frozenset(),
}


class PaymentMethod(str, Enum):
    """How the customer pays."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    """Reduced three-state view of the invoice lifecycle."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


_PAYMENT_STATUS_VIEW = {
    InvoiceStatus.PENDING: PaymentStatus.PENDING,
    InvoiceStatus.CONFIRMED: PaymentStatus.PENDING,
    InvoiceStatus.PAID: PaymentStatus.PAID,
    InvoiceStatus.COMPLETED: PaymentStatus.PAID,
    InvoiceStatus.CANCELED: PaymentStatus.CANCELLED,
    InvoiceStatus.REFUNDED: PaymentStatus.CANCELLED,
}


# =============================================================================
# REQUESTS
# =============================================================================


class InvoiceItemRequest(BaseModel):
    """One requested line: which product and how many."""

    product_id: UUID
    quantity: int = Field(..., ge=1)


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    customer_id: UUID
    items: list[InvoiceItemRequest] = Field(..., min_length=1)
    payment_method: PaymentMethod
    discount_code: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=2000)


class ConfirmPayload(BaseModel):
    """Payload for PENDING -> CONFIRMED."""

    notes: str | None = None


class PaymentPayload(BaseModel):
    """Payload for CONFIRMED -> PAID."""

    amount: Decimal = Field(..., ge=0)
    transaction_id: str | None = None
    bank_reference: str | None = None
    notes: str | None = None


class CompletePayload(BaseModel):
    """Payload for PAID -> COMPLETED."""

    notes: str | None = None


class CancelPayload(BaseModel):
    """Payload for -> CANCELED."""

    reason: str = Field(..., min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Cancellation reason is required")
        return value


class RefundItem(BaseModel):
    """Units of one product being refunded."""

    product_id: UUID
    quantity: int = Field(..., ge=1)


class RefundPayload(BaseModel):
    """Payload for -> REFUNDED. Omitting items means a full refund."""

    refund_amount: Decimal = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=1000)
    refund_method: PaymentMethod
    items: list[RefundItem] | None = None
    bank_account: BankProfile | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Refund reason is required")
        return value


# =============================================================================
# EMBEDDED DOCUMENTS
# =============================================================================


class LineItem(BaseModel):
    """Priced invoice line, snapshotted at creation."""

    product_id: UUID
    sku: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)
    effective_price: Decimal = Field(..., ge=0)
    subtotal: Decimal = Field(..., ge=0)


class AppliedDiscount(BaseModel):
    """Snapshot of the discount code applied to an invoice."""

    discount_id: UUID
    code: str
    type: DiscountType
    value: Decimal
    amount: Decimal = Field(..., ge=0)


class HistoryEntry(BaseModel):
    """Append-only audit record embedded in the invoice."""

    actor: UUID
    timestamp: datetime
    action: str
    changes: dict[str, Any] = Field(default_factory=dict)


class PaymentInfo(BaseModel):
    """Recorded payment metadata."""

    amount: Decimal
    paid_amount: Decimal
    paid_at: datetime
    paid_by: UUID
    transaction_id: str | None = None
    bank_reference: str | None = None
    notes: str | None = None


class RefundInfo(BaseModel):
    """Recorded refund metadata."""

    amount: Decimal
    reason: str
    method: PaymentMethod
    items: list[RefundItem] = Field(default_factory=list)
    is_partial: bool = False
    bank_account: BankProfile | None = None
    refunded_at: datetime
    refunded_by: UUID


# =============================================================================
# INVOICE
# =============================================================================


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    invoice_number: str
    status: InvoiceStatus
    customer_id: UUID
    items: list[LineItem]
    subtotal: Decimal = Field(..., ge=0)
    discount: AppliedDiscount | None = None
    total: Decimal = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_info: PaymentInfo | None = None
    refund_info: RefundInfo | None = None
    payment_qr: str | None = None
    notes: str | None = None
    created_by: UUID
    history: list[HistoryEntry] = Field(default_factory=list)

    # Invoice-level guards: set once the matching compensation has run
    stock_released: bool = False
    discount_reverted: bool = False
    customer_reverted: bool = False

    confirmed_at: datetime | None = None
    paid_at: datetime | None = None
    completed_at: datetime | None = None
    canceled_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def discount_amount(self) -> Decimal:
        """Order-level discount taken off the subtotal."""
        return self.discount.amount if self.discount else Decimal("0.00")

    @property
    def payment_status(self) -> PaymentStatus:
        """Three-state view: pending, paid or cancelled."""
        return _PAYMENT_STATUS_VIEW[self.status]

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are possible."""
        return not INVOICE_TRANSITIONS[self.status]

    def can_transition_to(self, status: InvoiceStatus) -> bool:
        """Whether the state table allows moving to ``status``."""
        return status in INVOICE_TRANSITIONS[self.status]

    def line_for(self, product_id: UUID) -> LineItem | None:
        """First line item for a product, if any."""
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


# =============================================================================
# STATISTICS
# =============================================================================


class RevenueSummary(BaseModel):
    """Aggregate over revenue-recognized invoices."""

    total_invoices: int = 0
    total_revenue: Decimal = Decimal("0.00")
    average_value: Decimal = Decimal("0.00")
    min_value: Decimal = Decimal("0.00")
    max_value: Decimal = Decimal("0.00")


class DailyRevenue(BaseModel):
    """Revenue for one UTC day."""

    day: date
    revenue: Decimal
    count: int


class TopProduct(BaseModel):
    """Best-selling product by quantity."""

    product_id: UUID
    sku: str
    name: str
    total_quantity: int
    total_revenue: Decimal


class PaymentMethodBreakdown(BaseModel):
    """Invoice count and total per payment method."""

    method: PaymentMethod
    count: int
    total: Decimal


class InvoiceStatistics(BaseModel):
    """Reporting snapshot over a date range."""

    summary: RevenueSummary
    daily_revenue: list[DailyRevenue]
    top_products: list[TopProduct]
    payment_methods: list[PaymentMethodBreakdown]

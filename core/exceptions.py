"""Typed exceptions for invoice engine failures.

Every error carries a machine-readable ``kind`` alongside its message so the
calling layer can map it to a response without parsing strings.
"""

from decimal import Decimal
from uuid import UUID


class InvoiceEngineError(Exception):
    """Base class for invoice engine errors."""

    kind = "invoice_engine_error"


class ValidationError(InvoiceEngineError):
    """Bad input shape or a business precondition the caller violated."""

    kind = "validation_error"


class InvalidQuantityError(ValidationError):
    """Line quantity is not a whole number of at least 1."""

    kind = "invalid_quantity"

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be an integer >= 1, got {quantity!r}")


class NotFoundError(InvoiceEngineError):
    """Customer, product, discount or invoice is missing or inactive."""

    kind = "not_found"


class InsufficientStockError(InvoiceEngineError):
    """Requested quantity exceeds the product's available stock."""

    kind = "insufficient_stock"

    def __init__(self, product_id: UUID, requested: int, available: int | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for product {product_id}: requested {requested}")


class InvalidTransitionError(InvoiceEngineError):
    """Transition is not in the invoice state table."""

    kind = "invalid_transition"

    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition invoice from {_status_name(from_status)} "
            f"to {_status_name(to_status)}"
        )


class CannotUpdateCanceledInvoiceError(InvoiceEngineError):
    """Payment status of a cancelled invoice can no longer change."""

    kind = "cannot_update_canceled_invoice"

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Cannot update cancelled invoice {invoice_id}")


class DiscountExhaustedError(InvoiceEngineError):
    """Discount code reached its usage limit."""

    kind = "discount_exhausted"

    def __init__(self, discount_id: UUID, code: str | None = None):
        self.discount_id = discount_id
        self.code = code
        super().__init__(f"Discount code {code or discount_id} has reached its usage limit")


class RefundAmountMismatchError(InvoiceEngineError):
    """Partial refund items do not add up to the requested refund amount."""

    kind = "refund_amount_mismatch"

    def __init__(self, expected: Decimal, requested: Decimal):
        self.expected = expected
        self.requested = requested
        super().__init__(
            f"Refund amount {requested} does not match refunded items total {expected}"
        )


class InfrastructureError(InvoiceEngineError):
    """
    Storage, cache or network failure (including timeouts).

    Retryable by the caller once the dependency recovers.
    """

    kind = "infrastructure_error"


class DuplicateInvoiceNumberError(InvoiceEngineError):
    """Generated invoice number collided with an existing invoice."""

    kind = "duplicate_invoice_number"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice number {invoice_number} already exists")


def _status_name(status) -> str:
    return getattr(status, "name", str(status))

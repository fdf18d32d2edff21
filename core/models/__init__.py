"""Core domain models."""

from core.models.product import Product, ProductDiscount
from core.models.discount import DiscountCode, DiscountType
from core.models.customer import Customer
from core.models.store import BankProfile
from core.models.invoice import (
    Invoice, InvoiceStatus, INVOICE_TRANSITIONS, PaymentMethod, PaymentStatus,
    InvoiceCreate, InvoiceItemRequest, LineItem, AppliedDiscount, HistoryEntry,
    PaymentInfo, RefundInfo, RefundItem,
    ConfirmPayload, PaymentPayload, CompletePayload, CancelPayload, RefundPayload,
    InvoiceStatistics, RevenueSummary, DailyRevenue, TopProduct, PaymentMethodBreakdown,
)

__all__ = [
    # Product
    "Product", "ProductDiscount",
    # Discount
    "DiscountCode", "DiscountType",
    # Customer
    "Customer",
    # Store
    "BankProfile",
    # Invoice
    "Invoice", "InvoiceStatus", "INVOICE_TRANSITIONS", "PaymentMethod", "PaymentStatus",
    "InvoiceCreate", "InvoiceItemRequest", "LineItem", "AppliedDiscount", "HistoryEntry",
    "PaymentInfo", "RefundInfo", "RefundItem",
    # Transition payloads
    "ConfirmPayload", "PaymentPayload", "CompletePayload", "CancelPayload", "RefundPayload",
    # Statistics
    "InvoiceStatistics", "RevenueSummary", "DailyRevenue", "TopProduct", "PaymentMethodBreakdown",
]

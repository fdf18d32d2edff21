"""
Invoice service: creation and the invoice state machine.

Lifecycle:
    PENDING -> CONFIRMED -> PAID -> COMPLETED
    PENDING, CONFIRMED -> CANCELED
    PAID, COMPLETED -> REFUNDED

Creating or transitioning an invoice touches several records (stock,
discount usage, customer history, the invoice itself) that are not written
in one database transaction. Each step registers its inverse on a
CompensationStack, and any failure unwinds the completed steps before the
error reaches the caller.

Reverting effects on cancel/refund is guarded by flags on the invoice, so
stock, discount usage and customer history are reverted at most once per
invoice no matter how often a compensation is replayed.
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.audit import AuditLogger, AuditAction, compute_changes, history_entry
from core.compensation import CompensationStack
from core.config import InvoiceEngineConfig
from core.event_bus import EventBus
from core.events import (
    InvoiceCreated, InvoiceConfirmed, InvoicePaid,
    InvoiceCompleted, InvoiceCancelled, InvoiceRefunded,
)
from core.exceptions import (
    CannotUpdateCanceledInvoiceError, DuplicateInvoiceNumberError,
    InfrastructureError, InsufficientStockError, InvalidTransitionError,
    NotFoundError, RefundAmountMismatchError, ValidationError,
)
from core.models import (
    AppliedDiscount, CancelPayload, CompletePayload, ConfirmPayload,
    DailyRevenue, HistoryEntry, Invoice, InvoiceCreate, InvoiceItemRequest,
    InvoiceStatistics, InvoiceStatus, LineItem, PaymentInfo, PaymentMethod,
    PaymentMethodBreakdown, PaymentPayload, PaymentStatus, RefundInfo,
    RefundItem, RefundPayload, RevenueSummary, TopProduct,
)
from core.services.catalog_service import CatalogService
from core.services.customer_ledger import CustomerLedger
from core.services.customer_service import CustomerService
from core.services.discount_service import DiscountService
from core.services.inventory_ledger import InventoryLedger
from core.services.invoice_numbers import InvoiceNumberGenerator
from core.services.invoice_repository import InvoiceRepository
from core.services.pricing import PricingCalculator, ZERO, to_money
from core.services.store_service import StoreService
from utils.user_context import get_current_user_id
from utils.timezone import now_utc, utc_date

logger = logging.getLogger(__name__)

_TRANSACTION_ID = re.compile(r"^[A-Za-z0-9]{6,20}$")

_PAYLOADS: dict[InvoiceStatus, type[BaseModel]] = {
    InvoiceStatus.CONFIRMED: ConfirmPayload,
    InvoiceStatus.PAID: PaymentPayload,
    InvoiceStatus.COMPLETED: CompletePayload,
    InvoiceStatus.CANCELED: CancelPayload,
    InvoiceStatus.REFUNDED: RefundPayload,
}

_EVENTS = {
    InvoiceStatus.CONFIRMED: InvoiceConfirmed,
    InvoiceStatus.PAID: InvoicePaid,
    InvoiceStatus.COMPLETED: InvoiceCompleted,
    InvoiceStatus.CANCELED: InvoiceCancelled,
    InvoiceStatus.REFUNDED: InvoiceRefunded,
}

_TIMESTAMPS = {
    InvoiceStatus.CONFIRMED: "confirmed_at",
    InvoiceStatus.PAID: "paid_at",
    InvoiceStatus.COMPLETED: "completed_at",
    InvoiceStatus.CANCELED: "canceled_at",
    InvoiceStatus.REFUNDED: "refunded_at",
}

# Statuses whose invoices count as revenue
_REVENUE_STATUSES = (InvoiceStatus.PAID, InvoiceStatus.COMPLETED)

_CANCELLATION_REASON = "Payment cancelled"


def _merge_quantities(items) -> dict[UUID, int]:
    """Sum quantities per product, keeping first-seen order."""
    merged: dict[UUID, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return merged


def _parse(model: type[BaseModel], data: Any, what: str) -> BaseModel:
    """Validate input against a pydantic model, raising our ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data if data is not None else {})
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {what}: {details}") from e


class InvoiceService:
    """
    Invoice creation and lifecycle transitions.

    All collaborators are injected; nothing here reaches for globals except
    the acting user, which comes from utils.user_context when not passed.
    """

    def __init__(
        self,
        repository: InvoiceRepository,
        catalog: CatalogService,
        customers: CustomerService,
        pricing: PricingCalculator,
        inventory: InventoryLedger,
        discounts: DiscountService,
        customer_ledger: CustomerLedger,
        numbers: InvoiceNumberGenerator,
        audit: AuditLogger,
        event_bus: EventBus,
        qr_provider=None,
        store: StoreService | None = None,
        config: InvoiceEngineConfig | None = None,
    ):
        self.repository = repository
        self.catalog = catalog
        self.customers = customers
        self.pricing = pricing
        self.inventory = inventory
        self.discounts = discounts
        self.customer_ledger = customer_ledger
        self.numbers = numbers
        self.audit = audit
        self.event_bus = event_bus
        self.qr_provider = qr_provider
        self.store = store
        self.config = config or InvoiceEngineConfig()

        self._handlers: dict[InvoiceStatus, tuple[Callable, Callable]] = {
            InvoiceStatus.CONFIRMED: (self._prepare_confirm, self._no_effects),
            InvoiceStatus.PAID: (self._prepare_payment, self._no_effects),
            InvoiceStatus.COMPLETED: (self._prepare_complete, self._complete_effects),
            InvoiceStatus.CANCELED: (self._prepare_cancel, self._cancel_effects),
            InvoiceStatus.REFUNDED: (self._prepare_refund, self._refund_effects),
        }

    # =========================================================================
    # CREATE
    # =========================================================================

    def create(self, data: InvoiceCreate | dict) -> Invoice:
        """
        Create an invoice in PENDING status.

        Reserves stock, counts the discount use and records the purchase on
        the customer. Any failure rolls back the steps already taken.

        Args:
            data: Customer, items, payment method and optional discount code

        Returns:
            Persisted invoice (with payment QR for bank transfers when available)

        Raises:
            ValidationError: If the request is malformed or a discount doesn't apply
            NotFoundError: If the customer, a product or the discount code is missing or inactive
            InsufficientStockError: If a product lacks stock
            DiscountExhaustedError: If the discount code is used up
            InfrastructureError: If storage fails or no unique invoice number can be allocated
        """
        data = _parse(InvoiceCreate, data, "invoice request")
        actor = get_current_user_id()
        now = now_utc()

        customer = self.customers.get_active(data.customer_id)
        lines = self._price_items(data.items, now)
        subtotal = self.pricing.subtotal(lines)

        with CompensationStack("create invoice") as undo:
            self.inventory.reserve(lines)
            undo.push("release reserved stock", lambda: self.inventory.release(lines))

            applied = None
            if data.discount_code:
                applied = self._apply_discount(data.discount_code, subtotal, now)
                undo.push(
                    "revert discount usage",
                    lambda: self.discounts.revert_usage(applied.discount_id)
                )

            total = self.pricing.total(subtotal, applied.amount if applied else ZERO)
            invoice = self._insert(data, actor, lines, subtotal, applied, total, now)
            undo.push("discard invoice", lambda: self.repository.discard(invoice.id))

            self.customer_ledger.record_purchase(customer.id, invoice.id)
            undo.push(
                "revert customer purchase",
                lambda: self.customer_ledger.revert_purchase(customer.id, invoice.id)
            )

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": invoice.model_dump(mode="json", exclude={"history"})},
                user_id=actor
            )
            undo.commit()

        if invoice.payment_method == PaymentMethod.BANK_TRANSFER:
            invoice = self._attach_payment_qr(invoice)

        logger.info(
            f"Created invoice {invoice.invoice_number} for customer {customer.id}: "
            f"total {invoice.total}"
        )
        self.event_bus.publish(InvoiceCreated.create(invoice))

        return invoice

    def _price_items(self, items: list[InvoiceItemRequest], now: datetime) -> list[LineItem]:
        lines = []
        for product_id, quantity in _merge_quantities(items).items():
            product = self.catalog.get_active(product_id)
            if product.quantity < quantity:
                raise InsufficientStockError(product.id, quantity, product.quantity)
            lines.append(self.pricing.price_line(product, quantity, now))
        return lines

    def _apply_discount(self, code: str, subtotal: Decimal, now: datetime) -> AppliedDiscount:
        discount = self.discounts.get_by_code(code)
        self.discounts.validate_for_order(discount, subtotal, now)
        amount = self.pricing.order_discount_amount(discount, subtotal)

        self.discounts.apply_usage(discount.id)

        return AppliedDiscount(
            discount_id=discount.id,
            code=discount.code,
            type=discount.type,
            value=discount.value,
            amount=amount,
        )

    def _insert(
        self,
        data: InvoiceCreate,
        actor: UUID,
        lines: list[LineItem],
        subtotal: Decimal,
        applied: AppliedDiscount | None,
        total: Decimal,
        now: datetime,
    ) -> Invoice:
        """Insert the invoice, retrying with a fresh number on collisions."""
        invoice_id = uuid4()
        attempts = self.config.invoice_number_attempts

        for attempt in range(attempts):
            invoice = Invoice(
                id=invoice_id,
                invoice_number=self.numbers.next_number(collisions=attempt, as_of=now),
                status=InvoiceStatus.PENDING,
                customer_id=data.customer_id,
                items=lines,
                subtotal=subtotal,
                discount=applied,
                total=total,
                payment_method=data.payment_method,
                notes=data.notes,
                created_by=actor,
                history=[
                    history_entry(actor, "create", {
                        "status": {"old": None, "new": InvoiceStatus.PENDING.value},
                        "total": {"old": None, "new": str(total)},
                    })
                ],
                created_at=now,
                updated_at=now,
            )
            try:
                return self.repository.insert(invoice)
            except DuplicateInvoiceNumberError as e:
                logger.warning(f"{e}; retrying ({attempt + 1}/{attempts})")

        raise InfrastructureError(f"Could not allocate a unique invoice number after {attempts} attempts")

    def _attach_payment_qr(self, invoice: Invoice) -> Invoice:
        """Generate and store a payment QR. Never fails the caller."""
        if self.qr_provider is None or self.store is None:
            return invoice

        try:
            payment_qr = self.qr_provider.generate(invoice, self.store.get_bank_profile())
            if payment_qr is None:
                return invoice
            return self.repository.set_payment_qr(invoice.id, payment_qr)
        except Exception:
            logger.exception(f"Payment QR generation failed for invoice {invoice.invoice_number}")
            return invoice

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def transition(
        self,
        invoice_id: UUID,
        new_status: InvoiceStatus | str,
        payload: BaseModel | dict | None = None,
        actor: UUID | None = None,
    ) -> Invoice:
        """
        Move an invoice to a new status and run that status's side effects.

        Args:
            invoice_id: Invoice UUID
            new_status: Target status
            payload: Payload for the target (payment details, cancel reason, refund...)
            actor: Acting user (defaults to current context)

        Returns:
            Updated invoice, with exactly one new history entry

        Raises:
            NotFoundError: If the invoice doesn't exist
            InvalidTransitionError: If the move isn't allowed from the current
                status, including when another caller moved the invoice first
            ValidationError: If the payload is missing or invalid
            RefundAmountMismatchError: If partial refund items don't add up
        """
        new_status = self._coerce_status(new_status)
        actor = actor or get_current_user_id()

        current = self._get_or_raise(invoice_id)
        if not current.can_transition_to(new_status):
            raise InvalidTransitionError(current.status, new_status)

        data = _parse(_PAYLOADS[new_status], payload, f"{new_status.value} payload")
        prepare, apply_effects = self._handlers[new_status]
        updates, details = prepare(current, data, actor)

        updated = self._claim(current, new_status, updates, details, actor)

        with CompensationStack(f"{new_status.value} invoice {current.invoice_number}") as undo:
            undo.push("restore invoice", lambda: self._restore(current, new_status))

            apply_effects(updated, undo)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=updated.id,
                action=AuditAction.TRANSITION,
                changes=updated.history[-1].changes,
                user_id=actor
            )
            undo.commit()

        # Effect flags were set after the claim
        updated = self.repository.get_by_id(updated.id) or updated

        logger.info(
            f"Invoice {updated.invoice_number} moved from "
            f"{current.status.value} to {new_status.value}"
        )
        self.event_bus.publish(_EVENTS[new_status].create(updated))

        return updated

    def _coerce_status(self, status: InvoiceStatus | str) -> InvoiceStatus:
        if isinstance(status, InvoiceStatus):
            return status
        try:
            return InvoiceStatus(str(status).lower())
        except ValueError:
            raise ValidationError(f"Unknown invoice status {status!r}")

    def _claim(
        self,
        current: Invoice,
        new_status: InvoiceStatus,
        updates: dict[str, Any],
        details: dict[str, Any],
        actor: UUID,
    ) -> Invoice:
        """Compare-and-set the new status with its history entry."""
        now = now_utc()
        candidate = current.model_copy(
            update={**updates, "status": new_status, _TIMESTAMPS[new_status]: now}
        )

        changes = compute_changes(
            current.model_dump(mode="json"),
            candidate.model_dump(mode="json"),
            exclude_fields={"updated_at", "history"}
        )
        changes.update(details)

        candidate = candidate.model_copy(
            update={"history": [*current.history, history_entry(actor, new_status.value, changes)]}
        )

        claimed = self.repository.update(candidate, expected_status=current.status)
        if claimed is None:
            latest = self.repository.get_by_id(current.id)
            raise InvalidTransitionError(latest.status if latest else current.status, new_status)

        return claimed

    def _restore(self, previous: Invoice, status: InvoiceStatus) -> None:
        """Put back the pre-transition invoice snapshot."""
        self.repository.update(previous, expected_status=status)
        if status == InvoiceStatus.COMPLETED or previous.completed_at is not None:
            self._refresh_total_spent(previous.customer_id)

    # -- CONFIRMED ------------------------------------------------------------

    def _prepare_confirm(self, invoice: Invoice, data: ConfirmPayload, actor: UUID):
        self.inventory.check_available(invoice.items)
        return self._notes_update(data.notes), {}

    # -- PAID -----------------------------------------------------------------

    def _prepare_payment(self, invoice: Invoice, data: PaymentPayload, actor: UUID):
        self._validate_payment(invoice, data)
        payment_info = PaymentInfo(
            amount=invoice.total,
            paid_amount=to_money(data.amount),
            paid_at=now_utc(),
            paid_by=actor,
            transaction_id=data.transaction_id,
            bank_reference=data.bank_reference,
            notes=data.notes,
        )
        return {"payment_info": payment_info}, {}

    def _validate_payment(self, invoice: Invoice, data: PaymentPayload) -> None:
        if to_money(data.amount) != invoice.total:
            raise ValidationError(
                f"Payment amount {to_money(data.amount)} must equal invoice total {invoice.total}"
            )
        if invoice.payment_method == PaymentMethod.BANK_TRANSFER:
            if not data.transaction_id or not _TRANSACTION_ID.match(data.transaction_id):
                raise ValidationError(
                    "Bank transfer payments require a transaction ID of 6-20 letters or digits"
                )

    # -- COMPLETED ------------------------------------------------------------

    def _prepare_complete(self, invoice: Invoice, data: CompletePayload, actor: UUID):
        return self._notes_update(data.notes), {}

    def _complete_effects(self, invoice: Invoice, undo: CompensationStack) -> None:
        self._refresh_total_spent(invoice.customer_id)

    # -- CANCELED -------------------------------------------------------------

    def _prepare_cancel(self, invoice: Invoice, data: CancelPayload, actor: UUID):
        return {}, {"reason": data.reason}

    def _cancel_effects(self, invoice: Invoice, undo: CompensationStack) -> None:
        self._revert_effects(invoice, undo)
        if invoice.completed_at is not None:
            self._refresh_total_spent(invoice.customer_id)

    # -- REFUNDED -------------------------------------------------------------

    def _prepare_refund(self, invoice: Invoice, data: RefundPayload, actor: UUID):
        amount = to_money(data.refund_amount)
        if amount > invoice.total:
            raise ValidationError(
                f"Refund amount {amount} exceeds invoice total {invoice.total}"
            )
        if data.refund_method == PaymentMethod.BANK_TRANSFER and data.bank_account is None:
            raise ValidationError("Bank information required for bank transfer refunds")

        if data.items:
            items = self._partial_refund_items(invoice, data.items, amount)
        else:
            items = [
                RefundItem(product_id=line.product_id, quantity=line.quantity)
                for line in invoice.items
            ]

        refund_info = RefundInfo(
            amount=amount,
            reason=data.reason,
            method=data.refund_method,
            items=items,
            is_partial=bool(data.items),
            bank_account=data.bank_account,
            refunded_at=now_utc(),
            refunded_by=actor,
        )
        return {"refund_info": refund_info}, {"reason": data.reason}

    def _partial_refund_items(
        self,
        invoice: Invoice,
        requested: list[RefundItem],
        amount: Decimal,
    ) -> list[RefundItem]:
        items = []
        expected = ZERO
        for product_id, quantity in _merge_quantities(requested).items():
            line = invoice.line_for(product_id)
            if line is None:
                raise ValidationError(f"Product {product_id} is not on invoice {invoice.invoice_number}")
            if quantity > line.quantity:
                raise ValidationError(
                    f"Refund quantity {quantity} exceeds invoiced quantity "
                    f"{line.quantity} for product {product_id}"
                )
            expected += line.effective_price * quantity
            items.append(RefundItem(product_id=product_id, quantity=quantity))

        expected = to_money(expected)
        if expected != amount:
            raise RefundAmountMismatchError(expected, amount)

        return items

    def _refund_effects(self, invoice: Invoice, undo: CompensationStack) -> None:
        if invoice.refund_info.is_partial:
            self._release_stock(invoice, invoice.refund_info.items, undo)
        else:
            self._revert_effects(invoice, undo)
        if invoice.completed_at is not None:
            self._refresh_total_spent(invoice.customer_id)

    # -- shared ---------------------------------------------------------------

    def _no_effects(self, invoice: Invoice, undo: CompensationStack) -> None:
        return None

    def _notes_update(self, notes: str | None) -> dict[str, Any]:
        return {"notes": notes} if notes else {}

    def _refresh_total_spent(self, customer_id: UUID) -> None:
        total_spent = self.repository.completed_revenue_for_customer(customer_id)
        self.customer_ledger.update_total_spent(customer_id, total_spent)

    # =========================================================================
    # EFFECT REVERSAL
    # =========================================================================

    def revert_effects(self, invoice_id: UUID) -> Invoice:
        """
        Release stock, give back the discount use and remove the purchase record.

        Safe to call any number of times: each effect is reverted at most once
        per invoice.

        Returns:
            Invoice with its effect flags as stored after the call
        """
        invoice = self._get_or_raise(invoice_id)
        with CompensationStack(f"revert effects of invoice {invoice.invoice_number}") as undo:
            self._revert_effects(invoice, undo)
            undo.commit()
        return self._get_or_raise(invoice_id)

    def _revert_effects(self, invoice: Invoice, undo: CompensationStack) -> None:
        self._release_stock(invoice, invoice.items, undo)
        self._revert_discount(invoice, undo)
        self._revert_purchase(invoice, undo)

    def _release_stock(self, invoice: Invoice, items, undo: CompensationStack) -> None:
        if not self.repository.claim_effect(invoice.id, "stock_released"):
            logger.info(f"Stock for invoice {invoice.invoice_number} already released")
            return
        undo.push(
            "clear stock released flag",
            lambda: self.repository.release_effect(invoice.id, "stock_released")
        )

        for item in items:
            self.inventory.release([item])
            undo.push(
                f"reinstate stock for product {item.product_id}",
                lambda item=item: self.inventory.reinstate([item])
            )

    def _revert_discount(self, invoice: Invoice, undo: CompensationStack) -> None:
        if invoice.discount is None:
            return
        if not self.repository.claim_effect(invoice.id, "discount_reverted"):
            logger.info(f"Discount usage for invoice {invoice.invoice_number} already reverted")
            return
        undo.push(
            "clear discount reverted flag",
            lambda: self.repository.release_effect(invoice.id, "discount_reverted")
        )

        discount_id = invoice.discount.discount_id
        self.discounts.revert_usage(discount_id)
        undo.push("reinstate discount usage", lambda: self.discounts.reinstate_usage(discount_id))

    def _revert_purchase(self, invoice: Invoice, undo: CompensationStack) -> None:
        if not self.repository.claim_effect(invoice.id, "customer_reverted"):
            logger.info(f"Purchase for invoice {invoice.invoice_number} already reverted")
            return
        undo.push(
            "clear customer reverted flag",
            lambda: self.repository.release_effect(invoice.id, "customer_reverted")
        )

        if self.customer_ledger.revert_purchase(invoice.customer_id, invoice.id):
            undo.push(
                "record customer purchase again",
                lambda: self.customer_ledger.record_purchase(invoice.customer_id, invoice.id)
            )

    # =========================================================================
    # PAYMENT STATUS (three-state view)
    # =========================================================================

    def update_payment_status(
        self,
        invoice_id: UUID,
        payment_status: PaymentStatus | str,
        actor: UUID | None = None,
        payload: BaseModel | dict | None = None,
    ) -> Invoice:
        """
        Change an invoice through its pending/paid/cancelled view.

        - paid: PENDING walks through CONFIRMED to PAID, CONFIRMED goes to PAID.
          Needs a payment payload. If the PAID step fails the invoice is put
          back to PENDING.
        - cancelled: PENDING/CONFIRMED are cancelled, PAID/COMPLETED fully
          refunded. A payload overrides the defaults (reason, and the refund
          method and bank account for refunds). Without bank details the
          refund is made in cash.

        Raises:
            CannotUpdateCanceledInvoiceError: If the invoice is already cancelled or refunded
            InvalidTransitionError: For any other change the view doesn't allow
        """
        try:
            target = PaymentStatus(str(getattr(payment_status, "value", payment_status)).lower())
        except ValueError:
            raise ValidationError(f"Unknown payment status {payment_status!r}")
        actor = actor or get_current_user_id()

        invoice = self._get_or_raise(invoice_id)
        if invoice.payment_status == PaymentStatus.CANCELLED:
            raise CannotUpdateCanceledInvoiceError(invoice.id)

        if target == PaymentStatus.CANCELLED:
            if invoice.status in (InvoiceStatus.PENDING, InvoiceStatus.CONFIRMED):
                return self.transition(
                    invoice.id, InvoiceStatus.CANCELED,
                    payload or {"reason": _CANCELLATION_REASON}, actor
                )
            refund = {
                "refund_amount": invoice.total,
                "reason": _CANCELLATION_REASON,
            }
            if isinstance(payload, BaseModel):
                refund.update(payload.model_dump(exclude_none=True))
            elif payload:
                refund.update(payload)
            refund.pop("items", None)
            # No bank details to send the money back to: refund in cash
            if not refund.get("bank_account"):
                refund.setdefault("refund_method", PaymentMethod.CASH)
            refund.setdefault("refund_method", invoice.payment_method)
            return self.transition(invoice.id, InvoiceStatus.REFUNDED, refund, actor)

        if target == PaymentStatus.PAID and invoice.status in (
            InvoiceStatus.PENDING, InvoiceStatus.CONFIRMED
        ):
            data = _parse(PaymentPayload, payload, "paid payload")
            self._validate_payment(invoice, data)
            with CompensationStack(f"pay invoice {invoice.invoice_number}") as undo:
                if invoice.status == InvoiceStatus.PENDING:
                    self.transition(invoice.id, InvoiceStatus.CONFIRMED, None, actor)
                    undo.push(
                        "restore pending invoice",
                        lambda: self._restore(invoice, InvoiceStatus.CONFIRMED)
                    )
                paid = self.transition(invoice.id, InvoiceStatus.PAID, data, actor)
                undo.commit()
            return paid

        canonical = {
            PaymentStatus.PENDING: InvoiceStatus.PENDING,
            PaymentStatus.PAID: InvoiceStatus.PAID,
        }[target]
        raise InvalidTransitionError(invoice.status, canonical)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def refresh_payment_qr(self, invoice_id: UUID) -> Invoice:
        """
        Regenerate the payment QR of an unpaid bank-transfer invoice.

        Unlike creation, failures here propagate to the caller.

        Raises:
            NotFoundError: If the invoice doesn't exist
            ValidationError: If the invoice isn't an unpaid bank transfer
            InfrastructureError: If no QR provider is configured or it fails
        """
        invoice = self._get_or_raise(invoice_id)
        if invoice.payment_method != PaymentMethod.BANK_TRANSFER:
            raise ValidationError(f"Invoice {invoice.invoice_number} is not paid by bank transfer")
        if invoice.payment_status != PaymentStatus.PENDING:
            raise ValidationError(f"Invoice {invoice.invoice_number} is no longer awaiting payment")
        if self.qr_provider is None or self.store is None:
            raise InfrastructureError("Payment QR provider is not configured")

        payment_qr = self.qr_provider.generate(invoice, self.store.get_bank_profile())
        if payment_qr is None:
            return invoice

        return self.repository.set_payment_qr(invoice.id, payment_qr)

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found, None otherwise.
        """
        return self.repository.get_by_id(invoice_id)

    def get_status_history(self, invoice_id: UUID) -> list[HistoryEntry]:
        """Embedded history of an invoice, oldest first."""
        return list(self._get_or_raise(invoice_id).history)

    def list_for_customer(self, customer_id: UUID, limit: int = 50) -> list[Invoice]:
        """
        List invoices for a customer.

        Args:
            customer_id: Customer UUID
            limit: Maximum results

        Returns:
            Invoices ordered by created_at descending
        """
        return self.repository.list_for_customer(customer_id, limit)

    def get_invoice_statistics(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> InvoiceStatistics:
        """
        Revenue report over paid and completed invoices created in [start, end].

        Returns:
            Summary, revenue per UTC day, best-selling products by quantity,
            and totals per payment method
        """
        invoices = self.repository.list_between(start, end, _REVENUE_STATUSES)

        totals = [invoice.total for invoice in invoices]
        revenue = to_money(sum(totals, ZERO))
        summary = RevenueSummary(
            total_invoices=len(invoices),
            total_revenue=revenue,
            average_value=to_money(revenue / len(invoices)) if invoices else ZERO,
            min_value=min(totals, default=ZERO),
            max_value=max(totals, default=ZERO),
        )

        daily: dict[date, DailyRevenue] = {}
        products: dict[UUID, TopProduct] = {}
        methods: dict[PaymentMethod, PaymentMethodBreakdown] = {}

        for invoice in invoices:
            day = utc_date(invoice.created_at)
            entry = daily.setdefault(day, DailyRevenue(day=day, revenue=ZERO, count=0))
            entry.revenue += invoice.total
            entry.count += 1

            for line in invoice.items:
                product = products.setdefault(line.product_id, TopProduct(
                    product_id=line.product_id, sku=line.sku, name=line.name,
                    total_quantity=0, total_revenue=ZERO,
                ))
                product.total_quantity += line.quantity
                product.total_revenue += line.subtotal

            method = methods.setdefault(invoice.payment_method, PaymentMethodBreakdown(
                method=invoice.payment_method, count=0, total=ZERO,
            ))
            method.count += 1
            method.total += invoice.total

        top_products = sorted(
            products.values(),
            key=lambda p: (-p.total_quantity, -p.total_revenue)
        )[:self.config.top_products_limit]

        return InvoiceStatistics(
            summary=summary,
            daily_revenue=[daily[day] for day in sorted(daily)],
            top_products=top_products,
            payment_methods=sorted(methods.values(), key=lambda m: -m.total),
        )

    def _get_or_raise(self, invoice_id: UUID) -> Invoice:
        invoice = self.repository.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

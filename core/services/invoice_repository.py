"""
Invoice persistence.

Invoices are stored one row each with items, discount, payment/refund info
and history embedded as JSONB. No business rules here: the state machine
decides, the repository writes. Every write that depends on current state
is a compare-and-set so concurrent callers cannot both win.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

import psycopg2.errors
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.exceptions import DuplicateInvoiceNumberError
from core.models import Invoice, InvoiceStatus
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Invoice-level guards that make compensations idempotent
EFFECT_FLAGS = {"stock_released", "discount_reverted", "customer_reverted"}

_JSON_FIELDS = ("items", "discount", "payment_info", "refund_info", "history")


def _json_or_none(value):
    return Json(value) if value is not None else None


class InvoiceRepository:
    """Storage for invoice documents."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def insert(self, invoice: Invoice) -> Invoice:
        """
        Persist a new invoice.

        Raises:
            DuplicateInvoiceNumberError: If the invoice number is taken
        """
        data = invoice.model_dump(mode="json")
        for field in _JSON_FIELDS:
            data[field] = _json_or_none(data[field])

        try:
            row = self.postgres.execute_returning(
                """
                INSERT INTO invoices (
                    id, invoice_number, status, customer_id,
                    items, subtotal, discount, total,
                    payment_method, payment_info, refund_info, payment_qr,
                    notes, created_by, history,
                    stock_released, discount_reverted, customer_reverted,
                    created_at, updated_at
                ) VALUES (
                    %(id)s, %(invoice_number)s, %(status)s, %(customer_id)s,
                    %(items)s, %(subtotal)s, %(discount)s, %(total)s,
                    %(payment_method)s, %(payment_info)s, %(refund_info)s, %(payment_qr)s,
                    %(notes)s, %(created_by)s, %(history)s,
                    %(stock_released)s, %(discount_reverted)s, %(customer_reverted)s,
                    %(created_at)s, %(updated_at)s
                )
                RETURNING *
                """,
                data
            )[0]
        except psycopg2.errors.UniqueViolation as e:
            if "invoice_number" in str(e):
                raise DuplicateInvoiceNumberError(invoice.invoice_number) from e
            raise

        return Invoice.model_validate(row)

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found and not discarded, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s AND deleted_at IS NULL",
            (invoice_id,)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def count(self) -> int:
        """Number of invoices ever inserted, discarded ones included."""
        return self.postgres.execute_scalar("SELECT COUNT(*) FROM invoices") or 0

    def update(self, invoice: Invoice, expected_status: InvoiceStatus) -> Invoice | None:
        """
        Write the mutable fields of an invoice if its status is still the expected one.

        Args:
            invoice: Invoice carrying the new state
            expected_status: Status the stored row must have for the write to apply

        Returns:
            Updated invoice, or None if the row changed status in the meantime
        """
        row = self.postgres.execute_single(
            """
            UPDATE invoices
            SET status = %s,
                payment_info = %s,
                refund_info = %s,
                history = %s,
                notes = %s,
                confirmed_at = %s,
                paid_at = %s,
                completed_at = %s,
                canceled_at = %s,
                refunded_at = %s,
                updated_at = %s
            WHERE id = %s AND status = %s AND deleted_at IS NULL
            RETURNING *
            """,
            (
                invoice.status,
                _json_or_none(invoice.payment_info and invoice.payment_info.model_dump(mode="json")),
                _json_or_none(invoice.refund_info and invoice.refund_info.model_dump(mode="json")),
                Json([entry.model_dump(mode="json") for entry in invoice.history]),
                invoice.notes,
                invoice.confirmed_at,
                invoice.paid_at,
                invoice.completed_at,
                invoice.canceled_at,
                invoice.refunded_at,
                now_utc(),
                invoice.id,
                expected_status,
            )
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def claim_effect(self, invoice_id: UUID, flag: str) -> bool:
        """
        Set an effect flag if it is not set yet.

        Returns:
            True if this call set it, False if it was already set
        """
        if flag not in EFFECT_FLAGS:
            raise ValueError(f"Unknown invoice effect flag '{flag}'")

        row = self.postgres.execute_single(
            f"""
            UPDATE invoices
            SET {flag} = true, updated_at = %s
            WHERE id = %s AND {flag} = false
            RETURNING id
            """,
            (now_utc(), invoice_id)
        )
        return row is not None

    def release_effect(self, invoice_id: UUID, flag: str) -> None:
        """Clear an effect flag, used when the effect itself is rolled back."""
        if flag not in EFFECT_FLAGS:
            raise ValueError(f"Unknown invoice effect flag '{flag}'")

        self.postgres.execute(
            f"UPDATE invoices SET {flag} = false, updated_at = %s WHERE id = %s",
            (now_utc(), invoice_id)
        )

    def set_payment_qr(self, invoice_id: UUID, payment_qr: str | None) -> Invoice:
        """Store the payment QR URL for an invoice."""
        row = self.postgres.execute_returning(
            """
            UPDATE invoices
            SET payment_qr = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (payment_qr, now_utc(), invoice_id)
        )[0]

        return Invoice.model_validate(row)

    def discard(self, invoice_id: UUID) -> None:
        """Soft delete an invoice whose creation was rolled back."""
        self.postgres.execute(
            """
            UPDATE invoices
            SET deleted_at = %s, updated_at = %s
            WHERE id = %s
            """,
            (now_utc(), now_utc(), invoice_id)
        )

    def list_for_customer(self, customer_id: UUID, limit: int = 50) -> list[Invoice]:
        """
        List invoices for a customer.

        Returns:
            Invoices ordered by created_at descending
        """
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE customer_id = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (customer_id, limit)
        )

        return [Invoice.model_validate(row) for row in rows]

    def list_between(
        self,
        start: datetime | None,
        end: datetime | None,
        statuses: Iterable[InvoiceStatus]
    ) -> list[Invoice]:
        """
        List invoices created in [start, end] with one of the given statuses.

        Either bound may be None for an open range.
        """
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE deleted_at IS NULL
              AND status = ANY(%s)
              AND (%s::timestamptz IS NULL OR created_at >= %s)
              AND (%s::timestamptz IS NULL OR created_at <= %s)
            ORDER BY created_at ASC
            """,
            ([status.value for status in statuses], start, start, end, end)
        )

        return [Invoice.model_validate(row) for row in rows]

    def completed_revenue_for_customer(self, customer_id: UUID) -> Decimal:
        """Sum of completed invoice totals for a customer, net of refunds."""
        total = self.postgres.execute_scalar(
            """
            SELECT COALESCE(SUM(total - COALESCE((refund_info->>'amount')::numeric, 0)), 0)
            FROM invoices
            WHERE customer_id = %s AND completed_at IS NOT NULL AND deleted_at IS NULL
            """,
            (customer_id,)
        )
        return Decimal(total or 0).quantize(Decimal("0.01"))

"""
Customer purchase ledger.

Keeps purchase_history and total_purchases in step. Both updates are
guarded on membership of the invoice id, so replaying either one leaves
len(purchase_history) == total_purchases.
"""

import logging
from decimal import Decimal
from uuid import UUID

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class CustomerLedger:
    """Purchase history and aggregate statistics on customer records."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def record_purchase(self, customer_id: UUID, invoice_id: UUID) -> bool:
        """
        Append an invoice to the customer's purchase history.

        Args:
            customer_id: Customer UUID
            invoice_id: Invoice UUID

        Returns:
            True if recorded, False if the invoice was already in the history
        """
        now = now_utc()
        row = self.postgres.execute_single(
            """
            UPDATE customers
            SET purchase_history = array_append(purchase_history, %s::uuid),
                total_purchases = total_purchases + 1,
                last_purchase_date = %s,
                updated_at = %s
            WHERE id = %s AND NOT (%s::uuid = ANY(purchase_history))
            RETURNING id
            """,
            (invoice_id, now, now, customer_id, invoice_id)
        )
        return row is not None

    def revert_purchase(self, customer_id: UUID, invoice_id: UUID) -> bool:
        """
        Remove an invoice from the customer's purchase history.

        Returns:
            True if removed, False if it wasn't there
        """
        row = self.postgres.execute_single(
            """
            UPDATE customers
            SET purchase_history = array_remove(purchase_history, %s::uuid),
                total_purchases = GREATEST(total_purchases - 1, 0),
                updated_at = %s
            WHERE id = %s AND %s::uuid = ANY(purchase_history)
            RETURNING id
            """,
            (invoice_id, now_utc(), customer_id, invoice_id)
        )
        return row is not None

    def update_total_spent(self, customer_id: UUID, total_spent: Decimal) -> None:
        """Overwrite the customer's lifetime spend."""
        self.postgres.execute(
            """
            UPDATE customers
            SET total_spent = %s, updated_at = %s
            WHERE id = %s
            """,
            (total_spent, now_utc(), customer_id)
        )
        logger.info(f"Customer {customer_id} total spent set to {total_spent}")

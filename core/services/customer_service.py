"""
Customer service for directory lookups.

The invoice engine only reads customers here; purchase statistics are
written through CustomerLedger.
"""

import logging
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.exceptions import NotFoundError
from core.models import Customer

logger = logging.getLogger(__name__)


class CustomerService:
    """Service for customer reads."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_by_id(self, customer_id: UUID) -> Customer | None:
        """
        Get customer by ID.

        Args:
            customer_id: Customer UUID

        Returns:
            Customer if found and not deleted, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM customers WHERE id = %s AND deleted_at IS NULL",
            (customer_id,)
        )

        if row is None:
            return None

        return Customer.model_validate(row)

    def get_active(self, customer_id: UUID) -> Customer:
        """
        Get a customer who can be invoiced.

        Raises:
            NotFoundError: If the customer is missing, deleted or inactive
        """
        customer = self.get_by_id(customer_id)
        if customer is None or not customer.is_active:
            raise NotFoundError(f"Customer {customer_id} not found or inactive")
        return customer

"""
Catalog service for product lookups.

Read-only view of the product catalog as the invoice engine needs it.
Catalog management (create, update, categories) lives elsewhere.
"""

import logging
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.exceptions import NotFoundError
from core.models import Product

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for product catalog reads."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_by_id(self, product_id: UUID) -> Product | None:
        """
        Get product by ID.

        Args:
            product_id: Product UUID

        Returns:
            Product if found and not deleted, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM products WHERE id = %s AND deleted_at IS NULL",
            (product_id,)
        )

        if row is None:
            return None

        return Product.model_validate(row)

    def get_active(self, product_id: UUID) -> Product:
        """
        Get a product that can be sold.

        Raises:
            NotFoundError: If the product is missing, deleted or inactive
        """
        product = self.get_by_id(product_id)
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found or inactive")
        return product

    def list_active(self) -> list[Product]:
        """
        List all active products.

        Returns:
            List of active products ordered by name
        """
        rows = self.postgres.execute(
            """
            SELECT * FROM products
            WHERE is_active = true AND deleted_at IS NULL
            ORDER BY name ASC
            """
        )

        return [Product.model_validate(row) for row in rows]

"""
Inventory ledger for product stock.

Every stock mutation is a single conditional UPDATE so concurrent invoices
cannot lose updates: a reservation only succeeds if the row still has enough
stock at the moment the statement runs.
"""

import logging
from enum import Enum
from typing import Iterable, Protocol
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.exceptions import InsufficientStockError, NotFoundError
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class StockItem(Protocol):
    """Anything carrying a product id and a quantity (requests, lines, refunds)."""

    product_id: UUID
    quantity: int


class StockStatus(str, Enum):
    """Stock level bucket for reporting."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


def stock_status(quantity: int, threshold: int) -> StockStatus:
    """Classify a stock level against the low-stock threshold."""
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


class InventoryLedger:
    """Atomic stock reservations and releases."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def reserve(self, items: Iterable[StockItem]) -> None:
        """
        Decrement stock for every item, all or nothing.

        Args:
            items: Products and quantities to reserve

        Raises:
            InsufficientStockError: If any product lacks stock. Items already
                decremented by this call are released before raising.
        """
        reserved: list[StockItem] = []
        try:
            for item in items:
                row = self.postgres.execute_single(
                    """
                    UPDATE products
                    SET quantity = quantity - %s, updated_at = %s
                    WHERE id = %s AND quantity >= %s AND deleted_at IS NULL
                    RETURNING id, quantity
                    """,
                    (item.quantity, now_utc(), item.product_id, item.quantity)
                )
                if row is None:
                    raise InsufficientStockError(
                        item.product_id, item.quantity, self.stock_level(item.product_id)
                    )
                reserved.append(item)
        except Exception:
            if reserved:
                logger.info(f"Releasing {len(reserved)} partially reserved item(s)")
                self.release(reserved)
            raise

    def release(self, items: Iterable[StockItem]) -> None:
        """
        Increment stock for every item.

        Unconditional; a negative starting level is incremented, not clamped.
        """
        for item in items:
            self.postgres.execute(
                """
                UPDATE products
                SET quantity = quantity + %s, updated_at = %s
                WHERE id = %s
                """,
                (item.quantity, now_utc(), item.product_id)
            )

    def reinstate(self, items: Iterable[StockItem]) -> None:
        """
        Take back stock that was released.

        Unconditional decrement, only used to undo a release when the
        operation that released it is rolled back.
        """
        for item in items:
            self.postgres.execute(
                """
                UPDATE products
                SET quantity = quantity - %s, updated_at = %s
                WHERE id = %s
                """,
                (item.quantity, now_utc(), item.product_id)
            )

    def check_available(self, items: Iterable[StockItem]) -> None:
        """
        Re-validate that every product still exists and is sellable.

        Read-only. Stock for these items was already reserved, so the
        remaining level only has to be non-negative.

        Raises:
            NotFoundError: If a product was deleted or deactivated
            InsufficientStockError: If a product's stock went negative
        """
        for item in items:
            row = self.postgres.execute_single(
                """
                SELECT quantity, is_active FROM products
                WHERE id = %s AND deleted_at IS NULL
                """,
                (item.product_id,)
            )
            if row is None or not row["is_active"]:
                raise NotFoundError(f"Product {item.product_id} is no longer available")
            if row["quantity"] < 0:
                raise InsufficientStockError(item.product_id, item.quantity, row["quantity"])

    def stock_level(self, product_id: UUID) -> int | None:
        """Current stock for a product, None if it doesn't exist."""
        return self.postgres.execute_scalar(
            "SELECT quantity FROM products WHERE id = %s AND deleted_at IS NULL",
            (product_id,)
        )

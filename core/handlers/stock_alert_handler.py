"""
Handler for InvoiceCreated events.

After stock is reserved for a new invoice, logs an alert for every product
that dropped to or below the low-stock threshold.
"""

import logging
from typing import Callable

from core.events import InvoiceCreated
from core.services.inventory_ledger import StockStatus, stock_status

logger = logging.getLogger(__name__)


def handle_invoice_created(inventory, threshold: int) -> Callable:
    """
    Factory that returns an InvoiceCreated handler.

    Args:
        inventory: InventoryLedger instance
        threshold: Stock level at or below which a product is low

    Returns:
        Handler callable that logs low and out-of-stock products
    """

    def handler(event: InvoiceCreated):
        invoice = event.invoice

        for item in invoice.items:
            level = inventory.stock_level(item.product_id)
            if level is None:
                continue

            status = stock_status(level, threshold)
            if status == StockStatus.OUT_OF_STOCK:
                logger.warning(
                    f"Product {item.sku} is out of stock after invoice {invoice.invoice_number}"
                )
            elif status == StockStatus.LOW_STOCK:
                logger.warning(
                    f"Product {item.sku} is low on stock ({level} left) "
                    f"after invoice {invoice.invoice_number}"
                )

    return handler

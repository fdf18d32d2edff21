"""
Pricing calculator for invoice lines and order discounts.

Pure calculations, no I/O. All money is Decimal rounded half-up to two
places at every boundary where an amount is stored.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from core.exceptions import InvalidQuantityError
from core.models import DiscountCode, DiscountType, LineItem, Product
from utils.timezone import now_utc

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize to two decimal places, half-up."""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


class PricingCalculator:
    """Line and order pricing."""

    def effective_price(self, product: Product, as_of: datetime | None = None) -> Decimal:
        """
        Product price after any currently applicable percentage discount.

        Args:
            product: Catalog product
            as_of: Point in time to evaluate the discount window (defaults to now)

        Returns:
            price * (1 - percentage/100) while the discount applies, else price
        """
        as_of = as_of or now_utc()
        discount = product.discount
        if discount is None or not discount.applies_at(as_of):
            return to_money(product.price)
        return to_money(product.price * (1 - discount.percentage / _HUNDRED))

    def line_subtotal(self, effective_price: Decimal, quantity: int) -> Decimal:
        """
        effective_price * quantity.

        Raises:
            InvalidQuantityError: If quantity is not an integer >= 1
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantityError(quantity)
        return to_money(effective_price * quantity)

    def price_line(self, product: Product, quantity: int, as_of: datetime | None = None) -> LineItem:
        """Build the invoice line snapshot for a product."""
        effective = self.effective_price(product, as_of)
        return LineItem(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            quantity=quantity,
            unit_price=to_money(product.price),
            effective_price=effective,
            subtotal=self.line_subtotal(effective, quantity),
        )

    def subtotal(self, items: Iterable[LineItem]) -> Decimal:
        """Sum of line subtotals."""
        return to_money(sum((item.subtotal for item in items), ZERO))

    def order_discount_amount(self, discount: DiscountCode, subtotal: Decimal) -> Decimal:
        """
        Order-level discount for a subtotal.

        Percentage codes take value% of the subtotal, capped at max_discount
        when set. Fixed codes never exceed the subtotal.
        """
        if discount.type == DiscountType.PERCENTAGE:
            amount = subtotal * discount.value / _HUNDRED
            if discount.max_discount is not None:
                amount = min(amount, discount.max_discount)
        else:
            amount = min(discount.value, subtotal)
        return to_money(max(amount, ZERO))

    def total(self, subtotal: Decimal, discount_amount: Decimal) -> Decimal:
        """subtotal - discount, never below zero."""
        return to_money(max(subtotal - discount_amount, ZERO))

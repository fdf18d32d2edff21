"""
Discount code lookup and usage accounting.

The usage counter is changed only through single conditional statements,
so two invoices racing for the last use of a code cannot both get it.
Once-per-invoice idempotency is the invoice engine's job, not the counter's.
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.exceptions import DiscountExhaustedError, NotFoundError, ValidationError
from core.models import DiscountCode
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class DiscountService:
    """Service for discount code operations."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_by_code(self, code: str) -> DiscountCode:
        """
        Get an active discount code, case-insensitively.

        Args:
            code: Code as typed by the customer

        Returns:
            Discount code

        Raises:
            NotFoundError: If no active code matches
        """
        row = self.postgres.execute_single(
            "SELECT * FROM discount_codes WHERE code = %s AND is_active = true",
            (code.strip().upper(),)
        )

        if row is None:
            raise NotFoundError(f"Discount code {code} not found or inactive")

        return DiscountCode.model_validate(row)

    def get_by_id(self, discount_id: UUID) -> DiscountCode | None:
        """Get discount code by ID, active or not."""
        row = self.postgres.execute_single(
            "SELECT * FROM discount_codes WHERE id = %s",
            (discount_id,)
        )

        if row is None:
            return None

        return DiscountCode.model_validate(row)

    def validate_for_order(
        self,
        discount: DiscountCode,
        order_value: Decimal,
        as_of: datetime | None = None
    ) -> None:
        """
        Check a code can be applied to an order of the given value.

        Raises:
            NotFoundError: If the code is inactive
            ValidationError: If outside its validity window or below the minimum order value
            DiscountExhaustedError: If the usage limit is reached
        """
        as_of = as_of or now_utc()

        if not discount.is_active:
            raise NotFoundError(f"Discount code {discount.code} not found or inactive")
        if not discount.is_within_window(as_of):
            raise ValidationError(f"Discount code {discount.code} is not valid at this time")
        if order_value < discount.min_order_value:
            raise ValidationError(
                f"Order value {order_value} is below the minimum {discount.min_order_value} "
                f"for discount code {discount.code}"
            )
        if not discount.has_remaining_uses:
            raise DiscountExhaustedError(discount.id, discount.code)

    def apply_usage(self, discount_id: UUID) -> int:
        """
        Count one use of a discount code if the limit allows it.

        Returns:
            The new usage count

        Raises:
            NotFoundError: If the code no longer exists
            DiscountExhaustedError: If the limit was reached, including by a
                concurrent invoice since validation
        """
        row = self.postgres.execute_single(
            """
            UPDATE discount_codes
            SET used_count = used_count + 1, updated_at = %s
            WHERE id = %s AND is_active = true
              AND (usage_limit IS NULL OR used_count < usage_limit)
            RETURNING used_count
            """,
            (now_utc(), discount_id)
        )

        if row is None:
            current = self.get_by_id(discount_id)
            if current is None or not current.is_active:
                raise NotFoundError(f"Discount code {discount_id} not found or inactive")
            raise DiscountExhaustedError(discount_id, current.code)

        return row["used_count"]

    def revert_usage(self, discount_id: UUID) -> None:
        """Give back one use of a discount code, floored at zero."""
        self.postgres.execute(
            """
            UPDATE discount_codes
            SET used_count = GREATEST(used_count - 1, 0), updated_at = %s
            WHERE id = %s
            """,
            (now_utc(), discount_id)
        )

    def reinstate_usage(self, discount_id: UUID) -> None:
        """
        Count a use again after it was reverted.

        Unconditional, only used to undo revert_usage when the cancellation
        or refund that reverted it is rolled back.
        """
        self.postgres.execute(
            """
            UPDATE discount_codes
            SET used_count = used_count + 1, updated_at = %s
            WHERE id = %s
            """,
            (now_utc(), discount_id)
        )

"""
Invoice number generation.

Format: INV{YY}{MM}{sequence:06d}, e.g. INV2410000042.

The sequence is an atomic Valkey counter, seeded once from the number of
existing invoices. If Valkey is unreachable the sequence falls back to
count + 1; that can collide under concurrent creates, which the unique
constraint on invoice_number catches and the caller retries.
"""

import logging
from datetime import datetime

import redis

from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

SEQUENCE_KEY = "invoice_seq"


def format_invoice_number(sequence: int, as_of: datetime) -> str:
    """Render a sequence number for the month of ``as_of``."""
    return f"INV{as_of:%y%m}{sequence:06d}"


class InvoiceNumberGenerator:
    """Allocates invoice numbers."""

    def __init__(self, valkey: ValkeyClient | None, repository):
        """
        Args:
            valkey: Counter store; None runs on the count + 1 fallback only
            repository: Anything with a count() of existing invoices
        """
        self.valkey = valkey
        self.repository = repository

    def next_number(self, collisions: int = 0, as_of: datetime | None = None) -> str:
        """
        Allocate the next invoice number.

        Args:
            collisions: Numbers already rejected as duplicates in this
                creation; the count-based fallback skips past them
            as_of: Date for the YYMM prefix (defaults to now)
        """
        return format_invoice_number(self._next_sequence(collisions), as_of or now_utc())

    def _next_sequence(self, collisions: int) -> int:
        if self.valkey is not None:
            try:
                self.valkey.set_if_absent(SEQUENCE_KEY, str(self.repository.count()))
                return self.valkey.incr(SEQUENCE_KEY)
            except redis.RedisError as e:
                logger.warning(f"Invoice sequence unavailable, falling back to count: {e}")

        return self.repository.count() + 1 + collisions

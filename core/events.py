"""
Domain events for the invoice engine.

Immutable event objects that represent invoice lifecycle changes. Events
enable loose coupling between the state machine and reactions such as stock
alerts: the engine publishes what happened, handlers react without the
engine knowing who's listening.

Events carry the full invoice so handlers don't need to re-fetch state.
They are published only after the operation (side effects, persistence and
audit) has fully succeeded.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class RetailEvent:
    """Base class for all domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InvoiceEvent(RetailEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice; Any avoids a circular import

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceEvent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new invoice was created in PENDING status with stock reserved."""


@dataclass(frozen=True)
class InvoiceConfirmed(InvoiceEvent):
    """Invoice moved to CONFIRMED."""


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Payment was recorded for the full invoice total."""


@dataclass(frozen=True)
class InvoiceCompleted(InvoiceEvent):
    """Invoice was completed and counted in customer statistics."""


@dataclass(frozen=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled and its effects reverted."""


@dataclass(frozen=True)
class InvoiceRefunded(InvoiceEvent):
    """Invoice was refunded, fully or partially."""

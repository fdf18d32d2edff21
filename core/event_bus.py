"""
Synchronous dispatch of invoice lifecycle events.

The invoice service publishes one event per committed operation
(InvoiceCreated ... InvoiceRefunded). Handlers such as the low-stock alert
run in the publishing thread right after the commit. A failing handler is
logged against the invoice it was reacting to and never undoes or fails the
invoice operation that triggered it.
"""

import logging
from typing import Callable

from core.events import InvoiceEvent

logger = logging.getLogger(__name__)

InvoiceHandler = Callable[[InvoiceEvent], object]


def invoice_event_names() -> set[str]:
    """Names of the concrete invoice lifecycle events."""
    return {cls.__name__ for cls in InvoiceEvent.__subclasses__()}


class EventBus:
    """
    Routes invoice events to handlers by event name.

    Handlers for one event run in subscription order. Subscribing to a name
    that is not an invoice event (e.g. the misspelt 'InvoiceCanceled')
    raises ValueError instead of silently never firing.
    """

    def __init__(self):
        self._subscribers: dict[str, list[InvoiceHandler]] = {}

    def subscribe(self, event_type: str | type[InvoiceEvent], callback: InvoiceHandler) -> None:
        """
        Register a handler for one invoice event.

        Args:
            event_type: Event class or its name, e.g. InvoiceCreated or 'InvoiceCreated'
            callback: Called with the event after the invoice operation commits

        Raises:
            ValueError: If event_type is not an invoice lifecycle event
        """
        name = event_type if isinstance(event_type, str) else event_type.__name__
        if name not in invoice_event_names():
            raise ValueError(f"Unknown invoice event {name!r}")
        self._subscribers.setdefault(name, []).append(callback)

    def publish(self, event: InvoiceEvent) -> None:
        """Deliver an event to its handlers; handler failures are only logged."""
        event_type = type(event).__name__
        invoice_number = getattr(event.invoice, "invoice_number", None)

        for callback in self._subscribers.get(event_type, []):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    f"Handler {getattr(callback, '__name__', repr(callback))} failed for "
                    f"{event_type} on invoice {invoice_number} (event_id={event.event_id})"
                )

"""Propagate the acting staff member through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Get the acting user ID from context.

    Invoices record who created them and every history entry records who
    moved them, so there is no anonymous fallback: missing context raises
    RuntimeError.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. Invoice operations must run on behalf of "
            "an authenticated staff member."
        )
    return user_id


def set_current_user_id(user_id: UUID) -> None:
    """Set the acting user ID in context."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """Clear user context. Call in a finally block to prevent leakage."""
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Context manager for temporarily setting the acting user.

    Worker threads do not inherit the caller's context; wrap their work in
    this.

    Example:
        with user_context(cashier_id):
            invoice = invoice_service.create(request)
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)

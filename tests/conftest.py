"""Shared test fixtures for the invoicing test suite."""

import pytest
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

# Cashier creating and transitioning invoices
TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")

# Second staff member, for actor attribution tests
TEST_USER_B_ID = UUID("00000000-0000-0000-0000-000000000002")


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def test_user_b_id() -> UUID:
    """The secondary test user's ID."""
    return TEST_USER_B_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Context manager that sets primary test user context."""
    with user_context(test_user_id):
        yield test_user_id


@pytest.fixture
def as_test_user_b(test_user_b_id):
    """Context manager that sets secondary test user context."""
    with user_context(test_user_b_id):
        yield test_user_b_id


@pytest.fixture
def event_bus():
    """Fresh EventBus per test."""
    from core.event_bus import EventBus
    return EventBus()


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
def make_invoice():
    """Factory for standalone Invoice objects, no storage involved."""
    from decimal import Decimal
    from uuid import uuid4

    from core.models import Invoice, InvoiceStatus, LineItem, PaymentMethod
    from utils.timezone import now_utc

    def _make(status=InvoiceStatus.PENDING, quantity=2, price="10.00", **overrides):
        now = now_utc()
        price = Decimal(price)
        subtotal = price * quantity
        data = {
            "id": uuid4(),
            "invoice_number": "INV2410000001",
            "status": status,
            "customer_id": uuid4(),
            "items": [LineItem(
                product_id=uuid4(), sku="TS-01", name="Ao thun", quantity=quantity,
                unit_price=price, effective_price=price, subtotal=subtotal,
            )],
            "subtotal": subtotal,
            "total": subtotal,
            "payment_method": PaymentMethod.CASH,
            "created_by": TEST_USER_ID,
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        return Invoice(**data)

    return _make

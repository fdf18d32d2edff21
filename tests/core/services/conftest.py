"""
In-memory collaborators for invoice engine tests.

Each fake subclasses the real service and replaces only its storage calls,
so domain logic that lives on the real class (get_active, validate_for_order)
is exercised as-is. Every mutation happens under one lock so concurrent
tests see the same atomicity the conditional SQL updates give in production.
"""

import threading
from datetime import timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import redis

from core.audit import AuditLogger
from core.config import InvoiceEngineConfig
from core.exceptions import (
    DiscountExhaustedError, DuplicateInvoiceNumberError,
    InsufficientStockError, NotFoundError,
)
from core.models import (
    BankProfile, Customer, DiscountCode, DiscountType, Invoice, InvoiceStatus,
    PaymentMethod, Product, ProductDiscount,
)
from core.services.catalog_service import CatalogService
from core.services.customer_ledger import CustomerLedger
from core.services.customer_service import CustomerService
from core.services.discount_service import DiscountService
from core.services.inventory_ledger import InventoryLedger
from core.services.invoice_numbers import InvoiceNumberGenerator
from core.services.invoice_repository import EFFECT_FLAGS, InvoiceRepository
from core.services.invoice_service import InvoiceService
from core.services.pricing import PricingCalculator
from core.services.store_service import StoreService
from utils.timezone import now_utc

TRANSACTION_ID = "FT24100012AB"


# =============================================================================
# IN-MEMORY STORE
# =============================================================================


class InMemoryDB:
    """Products, discount codes, customers and invoices behind one lock."""

    def __init__(self):
        self.lock = threading.RLock()
        self.products: dict[UUID, Product] = {}
        self.discounts: dict[UUID, DiscountCode] = {}
        self.customers: dict[UUID, Customer] = {}
        self.invoices: dict[UUID, Invoice] = {}
        self.bank_profile = BankProfile(
            bank_id="970436", account_number="0011004455667", account_name="Cua hang Minh An"
        )

    # -- factories ------------------------------------------------------------

    def add_product(
        self,
        price: str = "10.00",
        quantity: int = 10,
        discount: ProductDiscount | None = None,
        is_active: bool = True,
        sku: str | None = None,
        name: str | None = None,
    ) -> Product:
        now = now_utc()
        product = Product(
            id=uuid4(),
            sku=sku or f"SKU-{len(self.products) + 1:04d}",
            name=name or f"Product {len(self.products) + 1}",
            price=Decimal(price),
            quantity=quantity,
            discount=discount,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self.products[product.id] = product
        return product

    def add_discount(
        self,
        code: str = "SAVE10",
        type: DiscountType = DiscountType.PERCENTAGE,
        value: str = "10",
        min_order_value: str = "0",
        max_discount: str | None = None,
        usage_limit: int | None = None,
        used_count: int = 0,
        is_active: bool = True,
        starts_in: timedelta = timedelta(days=-1),
        ends_in: timedelta = timedelta(days=30),
    ) -> DiscountCode:
        now = now_utc()
        discount = DiscountCode(
            id=uuid4(),
            code=code,
            type=type,
            value=Decimal(value),
            min_order_value=Decimal(min_order_value),
            max_discount=Decimal(max_discount) if max_discount is not None else None,
            start_date=now + starts_in,
            end_date=now + ends_in,
            usage_limit=usage_limit,
            used_count=used_count,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self.discounts[discount.id] = discount
        return discount

    def add_customer(self, name: str = "Tran Thi Mai", is_active: bool = True) -> Customer:
        now = now_utc()
        customer = Customer(
            id=uuid4(),
            name=name,
            email="mai.tran@example.vn",
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self.customers[customer.id] = customer
        return customer

    # -- accessors ------------------------------------------------------------

    def stock(self, product_id: UUID) -> int:
        return self.products[product_id].quantity

    def used_count(self, discount_id: UUID) -> int:
        return self.discounts[discount_id].used_count

    def customer(self, customer_id: UUID) -> Customer:
        return self.customers[customer_id]

    def invoice(self, invoice_id: UUID) -> Invoice:
        return self.invoices[invoice_id]

    def _set(self, table: dict, key: UUID, **changes):
        table[key] = table[key].model_copy(update=changes)


# =============================================================================
# FAKE SERVICES
# =============================================================================


class InMemoryCatalog(CatalogService):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def get_by_id(self, product_id):
        product = self.db.products.get(product_id)
        if product is None or product.deleted_at is not None:
            return None
        return product.model_copy(deep=True)


class InMemoryCustomers(CustomerService):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def get_by_id(self, customer_id):
        customer = self.db.customers.get(customer_id)
        if customer is None or customer.deleted_at is not None:
            return None
        return customer.model_copy(deep=True)


class InMemoryInventory(InventoryLedger):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def reserve(self, items):
        reserved = []
        try:
            for item in items:
                with self.db.lock:
                    product = self.db.products.get(item.product_id)
                    if product is None or product.quantity < item.quantity:
                        raise InsufficientStockError(
                            item.product_id, item.quantity, product.quantity if product else None
                        )
                    self.db._set(self.db.products, item.product_id,
                                 quantity=product.quantity - item.quantity)
                reserved.append(item)
        except Exception:
            self.release(reserved)
            raise

    def release(self, items):
        for item in items:
            with self.db.lock:
                self.db._set(self.db.products, item.product_id,
                             quantity=self.db.stock(item.product_id) + item.quantity)

    def reinstate(self, items):
        for item in items:
            with self.db.lock:
                self.db._set(self.db.products, item.product_id,
                             quantity=self.db.stock(item.product_id) - item.quantity)

    def check_available(self, items):
        for item in items:
            product = self.db.products.get(item.product_id)
            if product is None or not product.is_active:
                raise NotFoundError(f"Product {item.product_id} is no longer available")
            if product.quantity < 0:
                raise InsufficientStockError(item.product_id, item.quantity, product.quantity)

    def stock_level(self, product_id):
        product = self.db.products.get(product_id)
        return product.quantity if product else None


class InMemoryDiscounts(DiscountService):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def get_by_code(self, code):
        for discount in self.db.discounts.values():
            if discount.code == code.strip().upper() and discount.is_active:
                return discount.model_copy()
        raise NotFoundError(f"Discount code {code} not found or inactive")

    def get_by_id(self, discount_id):
        discount = self.db.discounts.get(discount_id)
        return discount.model_copy() if discount else None

    def apply_usage(self, discount_id):
        with self.db.lock:
            discount = self.db.discounts.get(discount_id)
            if discount is None or not discount.is_active:
                raise NotFoundError(f"Discount code {discount_id} not found or inactive")
            if not discount.has_remaining_uses:
                raise DiscountExhaustedError(discount_id, discount.code)
            self.db._set(self.db.discounts, discount_id, used_count=discount.used_count + 1)
            return discount.used_count + 1

    def revert_usage(self, discount_id):
        with self.db.lock:
            count = self.db.used_count(discount_id)
            self.db._set(self.db.discounts, discount_id, used_count=max(count - 1, 0))

    def reinstate_usage(self, discount_id):
        with self.db.lock:
            count = self.db.used_count(discount_id)
            self.db._set(self.db.discounts, discount_id, used_count=count + 1)


class InMemoryCustomerLedger(CustomerLedger):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def record_purchase(self, customer_id, invoice_id):
        with self.db.lock:
            customer = self.db.customer(customer_id)
            if invoice_id in customer.purchase_history:
                return False
            self.db._set(
                self.db.customers, customer_id,
                purchase_history=[*customer.purchase_history, invoice_id],
                total_purchases=customer.total_purchases + 1,
                last_purchase_date=now_utc(),
            )
            return True

    def revert_purchase(self, customer_id, invoice_id):
        with self.db.lock:
            customer = self.db.customer(customer_id)
            if invoice_id not in customer.purchase_history:
                return False
            self.db._set(
                self.db.customers, customer_id,
                purchase_history=[i for i in customer.purchase_history if i != invoice_id],
                total_purchases=max(customer.total_purchases - 1, 0),
            )
            return True

    def update_total_spent(self, customer_id, total_spent):
        with self.db.lock:
            self.db._set(self.db.customers, customer_id, total_spent=total_spent)


class InMemoryInvoiceRepository(InvoiceRepository):
    _MUTABLE = (
        "status", "payment_info", "refund_info", "history", "notes",
        "confirmed_at", "paid_at", "completed_at", "canceled_at", "refunded_at",
    )

    def __init__(self, db: InMemoryDB):
        self.db = db

    def insert(self, invoice):
        with self.db.lock:
            for existing in self.db.invoices.values():
                if existing.invoice_number == invoice.invoice_number:
                    raise DuplicateInvoiceNumberError(invoice.invoice_number)
            self.db.invoices[invoice.id] = invoice.model_copy(deep=True)
            return invoice.model_copy(deep=True)

    def get_by_id(self, invoice_id):
        invoice = self.db.invoices.get(invoice_id)
        if invoice is None or invoice.deleted_at is not None:
            return None
        return invoice.model_copy(deep=True)

    def count(self):
        return len(self.db.invoices)

    def update(self, invoice, expected_status):
        with self.db.lock:
            stored = self.db.invoices.get(invoice.id)
            if stored is None or stored.deleted_at is not None or stored.status != expected_status:
                return None
            changes = {field: getattr(invoice, field) for field in self._MUTABLE}
            self.db._set(self.db.invoices, invoice.id, updated_at=now_utc(), **changes)
            return self.db.invoices[invoice.id].model_copy(deep=True)

    def claim_effect(self, invoice_id, flag):
        assert flag in EFFECT_FLAGS
        with self.db.lock:
            if getattr(self.db.invoices[invoice_id], flag):
                return False
            self.db._set(self.db.invoices, invoice_id, **{flag: True})
            return True

    def release_effect(self, invoice_id, flag):
        assert flag in EFFECT_FLAGS
        with self.db.lock:
            self.db._set(self.db.invoices, invoice_id, **{flag: False})

    def set_payment_qr(self, invoice_id, payment_qr):
        with self.db.lock:
            self.db._set(self.db.invoices, invoice_id, payment_qr=payment_qr)
            return self.db.invoices[invoice_id].model_copy(deep=True)

    def discard(self, invoice_id):
        with self.db.lock:
            self.db._set(self.db.invoices, invoice_id, deleted_at=now_utc())

    def list_for_customer(self, customer_id, limit=50):
        invoices = [
            i for i in self.db.invoices.values()
            if i.customer_id == customer_id and i.deleted_at is None
        ]
        invoices.sort(key=lambda i: i.created_at, reverse=True)
        return [i.model_copy(deep=True) for i in invoices[:limit]]

    def list_between(self, start, end, statuses):
        statuses = set(statuses)
        invoices = [
            i for i in self.db.invoices.values()
            if i.deleted_at is None
            and i.status in statuses
            and (start is None or i.created_at >= start)
            and (end is None or i.created_at <= end)
        ]
        invoices.sort(key=lambda i: i.created_at)
        return [i.model_copy(deep=True) for i in invoices]

    def completed_revenue_for_customer(self, customer_id):
        total = Decimal("0.00")
        for invoice in self.db.invoices.values():
            if (
                invoice.customer_id == customer_id
                and invoice.completed_at is not None
                and invoice.deleted_at is None
            ):
                refunded = invoice.refund_info.amount if invoice.refund_info else Decimal("0")
                total += invoice.total - refunded
        return total.quantize(Decimal("0.01"))


class RecordingAudit(AuditLogger):
    def __init__(self):
        self.entries: list[dict] = []

    def log_change(self, entity_type, entity_id, action, changes, user_id=None):
        self.entries.append({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "changes": changes,
            "user_id": user_id,
        })


class FakeValkey:
    """Atomic counter with an on/off switch for outage tests."""

    def __init__(self):
        self.values: dict[str, int] = {}
        self.down = False
        self._lock = threading.Lock()

    def _check(self):
        if self.down:
            raise redis.ConnectionError("Connection refused")

    def set_if_absent(self, key, value):
        self._check()
        with self._lock:
            if key in self.values:
                return False
            self.values[key] = int(value)
            return True

    def incr(self, key):
        self._check()
        with self._lock:
            self.values[key] = self.values.get(key, 0) + 1
            return self.values[key]


class StubQRProvider:
    """Payment QR provider returning a deterministic URL, or raising ``error``."""

    def __init__(self):
        self.error: Exception | None = None
        self.calls: list[UUID] = []

    def generate(self, invoice, bank_profile):
        self.calls.append(invoice.id)
        if self.error is not None:
            raise self.error
        if invoice.payment_method != PaymentMethod.BANK_TRANSFER:
            return None
        return (
            f"https://img.vietqr.io/image/{bank_profile.bank_id}-{bank_profile.account_number}"
            f"-compact2.png?amount={int(invoice.total)}&attempt={len(self.calls)}"
        )


class InMemoryStore(StoreService):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def get_bank_profile(self):
        if self.db.bank_profile is None:
            raise NotFoundError("Store bank account is not configured")
        return self.db.bank_profile


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def db():
    return InMemoryDB()


@pytest.fixture
def repository(db):
    return InMemoryInvoiceRepository(db)


@pytest.fixture
def inventory(db):
    return InMemoryInventory(db)


@pytest.fixture
def discounts(db):
    return InMemoryDiscounts(db)


@pytest.fixture
def customer_ledger(db):
    return InMemoryCustomerLedger(db)


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def valkey():
    return FakeValkey()


@pytest.fixture
def qr_provider():
    return StubQRProvider()


@pytest.fixture
def config():
    return InvoiceEngineConfig()


@pytest.fixture
def invoice_service(
    db, repository, inventory, discounts, customer_ledger,
    audit, valkey, qr_provider, event_bus, config,
):
    return InvoiceService(
        repository=repository,
        catalog=InMemoryCatalog(db),
        customers=InMemoryCustomers(db),
        pricing=PricingCalculator(),
        inventory=inventory,
        discounts=discounts,
        customer_ledger=customer_ledger,
        numbers=InvoiceNumberGenerator(valkey, repository),
        audit=audit,
        event_bus=event_bus,
        qr_provider=qr_provider,
        store=InMemoryStore(db),
        config=config,
    )


@pytest.fixture
def customer(db):
    return db.add_customer()


@pytest.fixture
def published(event_bus):
    """Names of events published during the test, in order."""
    names: list[str] = []
    for name in (
        "InvoiceCreated", "InvoiceConfirmed", "InvoicePaid",
        "InvoiceCompleted", "InvoiceCancelled", "InvoiceRefunded",
    ):
        event_bus.subscribe(name, lambda event, name=name: names.append(name))
    return names


def invoice_request(customer_id, *lines, payment_method=PaymentMethod.CASH, discount_code=None):
    """Build a create request from (product, quantity) pairs."""
    return {
        "customer_id": customer_id,
        "items": [{"product_id": product.id, "quantity": quantity} for product, quantity in lines],
        "payment_method": payment_method,
        "discount_code": discount_code,
    }


def payment_payload(invoice):
    """Valid payment payload for an invoice."""
    payload = {"amount": invoice.total}
    if invoice.payment_method == PaymentMethod.BANK_TRANSFER:
        payload["transaction_id"] = TRANSACTION_ID
    return payload


_PATH = {
    InvoiceStatus.CONFIRMED: [InvoiceStatus.CONFIRMED],
    InvoiceStatus.PAID: [InvoiceStatus.CONFIRMED, InvoiceStatus.PAID],
    InvoiceStatus.COMPLETED: [InvoiceStatus.CONFIRMED, InvoiceStatus.PAID, InvoiceStatus.COMPLETED],
}


@pytest.fixture
def advance(invoice_service):
    """Walk a PENDING invoice forward to CONFIRMED, PAID or COMPLETED."""

    def _advance(invoice, status: InvoiceStatus):
        for step in _PATH[status]:
            payload = payment_payload(invoice) if step == InvoiceStatus.PAID else None
            invoice = invoice_service.transition(invoice.id, step, payload)
        return invoice

    return _advance


@pytest.fixture
def make_request():
    """invoice_request helper."""
    return invoice_request


@pytest.fixture
def pay():
    """payment_payload helper."""
    return payment_payload

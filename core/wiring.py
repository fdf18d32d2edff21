"""
Service construction.

Builds the invoice engine and its collaborators from Vault-provided
connection URLs. The calling layer (HTTP, jobs) receives the services dict
and never constructs clients itself.
"""

import logging

import redis

from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import get_database_url, get_valkey_url
from clients.vietqr_client import VietQRClient
from core.audit import AuditLogger
from core.config import InvoiceEngineConfig
from core.event_bus import EventBus
from core.handlers.stock_alert_handler import handle_invoice_created
from core.services.catalog_service import CatalogService
from core.services.customer_ledger import CustomerLedger
from core.services.customer_service import CustomerService
from core.services.discount_service import DiscountService
from core.services.inventory_ledger import InventoryLedger
from core.services.invoice_numbers import InvoiceNumberGenerator
from core.services.invoice_repository import InvoiceRepository
from core.services.invoice_service import InvoiceService
from core.services.pricing import PricingCalculator
from core.services.store_service import StoreService

logger = logging.getLogger(__name__)


def build_services(config: InvoiceEngineConfig | None = None) -> dict:
    """
    Construct every service the invoice engine needs.

    Args:
        config: Engine configuration (defaults apply when omitted)

    Returns:
        Dict of services keyed by domain ("invoice", "catalog", ...)
    """
    config = config or InvoiceEngineConfig()

    postgres = PostgresClient(
        get_database_url(),
        statement_timeout_ms=config.statement_timeout_ms,
        connect_timeout_seconds=config.connect_timeout_seconds,
    )

    try:
        valkey = ValkeyClient(get_valkey_url(), timeout_seconds=config.valkey_timeout_seconds)
    except redis.RedisError as e:
        logger.warning(f"Valkey unavailable, invoice numbers fall back to count: {e}")
        valkey = None

    event_bus = EventBus()
    audit = AuditLogger(postgres)
    repository = InvoiceRepository(postgres)
    catalog = CatalogService(postgres)
    customers = CustomerService(postgres)
    inventory = InventoryLedger(postgres)
    discounts = DiscountService(postgres)
    store = StoreService(postgres)

    invoice = InvoiceService(
        repository=repository,
        catalog=catalog,
        customers=customers,
        pricing=PricingCalculator(),
        inventory=inventory,
        discounts=discounts,
        customer_ledger=CustomerLedger(postgres),
        numbers=InvoiceNumberGenerator(valkey, repository),
        audit=audit,
        event_bus=event_bus,
        qr_provider=VietQRClient(
            image_base_url=config.vietqr_image_base_url,
            banks_url=config.vietqr_banks_url,
            template=config.qr_template,
            timeout_seconds=config.qr_timeout_seconds,
        ),
        store=store,
        config=config,
    )

    event_bus.subscribe(
        "InvoiceCreated",
        handle_invoice_created(inventory, config.low_stock_threshold)
    )

    return {
        "invoice": invoice,
        "catalog": catalog,
        "customer": customers,
        "discount": discounts,
        "inventory": inventory,
        "store": store,
        "event_bus": event_bus,
    }

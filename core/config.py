"""Invoice engine configuration."""

from pydantic import BaseModel, Field


class InvoiceEngineConfig(BaseModel):
    """
    Invoice engine configuration.

    Timeouts bound every call into infrastructure so no operation blocks
    indefinitely. Secrets (database and Valkey URLs) are not configured here;
    they come from Vault.
    """

    # Invoice numbering
    invoice_number_attempts: int = Field(
        default=5,
        description="Insert attempts before giving up on invoice number collisions",
        ge=1,
        le=20,
    )

    # Storage timeouts
    statement_timeout_ms: int = Field(
        default=5000,
        description="PostgreSQL statement_timeout applied to every connection",
        ge=100,
        le=60000,
    )
    connect_timeout_seconds: int = Field(
        default=10,
        description="PostgreSQL connect timeout",
        ge=1,
        le=60,
    )
    valkey_timeout_seconds: float = Field(
        default=2.0,
        description="Socket timeout for Valkey commands",
        gt=0,
        le=30,
    )

    # Payment QR
    qr_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for VietQR bank directory lookups",
        gt=0,
        le=30,
    )
    qr_template: str = Field(
        default="compact2",
        description="VietQR image template",
    )
    vietqr_image_base_url: str = Field(
        default="https://img.vietqr.io/image",
        description="Base URL for VietQR payment images",
    )
    vietqr_banks_url: str = Field(
        default="https://api.vietqr.io/v2/banks",
        description="VietQR bank directory endpoint",
    )

    # Inventory and reporting
    low_stock_threshold: int = Field(
        default=10,
        description="Stock level at or below which a product is reported as low",
        ge=0,
    )
    top_products_limit: int = Field(
        default=10,
        description="Number of products reported in invoice statistics",
        ge=1,
        le=100,
    )

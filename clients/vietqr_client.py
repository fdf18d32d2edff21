"""
VietQR client for bank-transfer payment QR codes.

Builds img.vietqr.io image URLs for an invoice. The receiving bank is
validated against the VietQR bank directory, fetched once per process with
a bounded HTTP timeout. Network failures surface as InfrastructureError so
callers can degrade gracefully.
"""

import logging
import threading
from decimal import Decimal, ROUND_HALF_UP
from typing import Any
from urllib.parse import quote, urlencode

import requests

from core.exceptions import InfrastructureError, NotFoundError, ValidationError
from core.models import BankProfile, Invoice, PaymentMethod

logger = logging.getLogger(__name__)


class VietQRClient:
    """
    Payment QR provider backed by VietQR.

    Usage:
        qr = VietQRClient(
            image_base_url="https://img.vietqr.io/image",
            banks_url="https://api.vietqr.io/v2/banks",
        )
        url = qr.generate(invoice, store.get_bank_profile())
    """

    def __init__(
        self,
        image_base_url: str,
        banks_url: str,
        template: str = "compact2",
        timeout_seconds: float = 5.0,
    ):
        if not image_base_url:
            raise ValueError("image_base_url is required")
        if not banks_url:
            raise ValueError("banks_url is required")

        self.image_base_url = image_base_url.rstrip("/")
        self.banks_url = banks_url
        self.template = template
        self.timeout_seconds = timeout_seconds
        self._banks: list[dict[str, Any]] | None = None
        self._banks_lock = threading.Lock()

    def _load_banks(self) -> list[dict[str, Any]]:
        """Fetch the bank directory once; later calls use the cached copy."""
        with self._banks_lock:
            if self._banks is not None:
                return self._banks

            try:
                response = requests.get(self.banks_url, timeout=self.timeout_seconds)
                response.raise_for_status()
                payload = response.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.error(f"VietQR bank directory unavailable: {e}")
                raise InfrastructureError("VietQR bank directory unavailable") from e

            banks = payload.get("data")
            if not isinstance(banks, list):
                raise InfrastructureError("VietQR bank directory returned no data")

            self._banks = banks
            logger.info(f"Loaded {len(banks)} banks from VietQR directory")
            return banks

    def find_bank(self, identifier: str) -> dict[str, Any]:
        """
        Find a bank by BIN, code or short name.

        Raises:
            NotFoundError: If no bank matches
        """
        for bank in self._load_banks():
            if identifier in (bank.get("bin"), bank.get("code"), bank.get("shortName"), bank.get("short_name")):
                return bank
        raise NotFoundError(f"Bank {identifier} not found")

    def validate_bank_profile(self, profile: BankProfile) -> dict[str, Any]:
        """
        Check that the receiving bank exists and supports transfers.

        Returns:
            The bank directory entry

        Raises:
            NotFoundError: Unknown bank
            ValidationError: Bank does not accept transfers
        """
        bank = self.find_bank(profile.bank_id)
        if not bank.get("transferSupported"):
            raise ValidationError(f"Bank {profile.bank_id} does not support transfers")
        return bank

    def build_url(
        self,
        bank_code: str,
        account_number: str,
        amount: Decimal | None = None,
        description: str | None = None,
        account_name: str | None = None,
    ) -> str:
        """Build a VietQR image URL. Amounts are whole VND."""
        url = f"{self.image_base_url}/{bank_code}-{account_number}-{self.template}.png"

        params = {}
        if amount:
            params["amount"] = str(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if description:
            params["addInfo"] = description
        if account_name:
            params["accountName"] = account_name

        if params:
            url += "?" + urlencode(params, quote_via=quote)
        return url

    def generate(self, invoice: Invoice, bank_profile: BankProfile) -> str | None:
        """
        Generate the payment QR URL for an invoice.

        Returns:
            QR image URL, or None for invoices not paid by bank transfer

        Raises:
            ValidationError: Invoice has no payable total or bank rejects transfers
            NotFoundError: Unknown bank
            InfrastructureError: Bank directory unreachable
        """
        if invoice.payment_method != PaymentMethod.BANK_TRANSFER:
            return None

        if invoice.total <= 0:
            raise ValidationError("Invoice total is required for a payment QR")

        bank = self.validate_bank_profile(bank_profile)

        return self.build_url(
            bank_code=bank.get("code") or bank_profile.bank_id,
            account_number=bank_profile.account_number,
            amount=invoice.total,
            description=f"Thanh toan hoa don {invoice.invoice_number}",
            account_name=bank_profile.account_name,
        )

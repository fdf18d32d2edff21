"""Store profile reads."""

import logging

from clients.postgres_client import PostgresClient
from core.exceptions import NotFoundError
from core.models import BankProfile

logger = logging.getLogger(__name__)


class StoreService:
    """Service for the store's own settings."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_bank_profile(self) -> BankProfile:
        """
        Get the store's receiving bank account.

        Raises:
            NotFoundError: If the store has no bank account configured
        """
        row = self.postgres.execute_single(
            """
            SELECT bank_id, account_number, account_name
            FROM stores
            WHERE bank_id IS NOT NULL AND account_number IS NOT NULL
            ORDER BY created_at ASC
            LIMIT 1
            """
        )

        if row is None:
            raise NotFoundError("Store bank account is not configured")

        return BankProfile.model_validate(row)

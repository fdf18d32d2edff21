"""
HashiCorp Vault client for the invoice engine's connection secrets.

AppRole authentication, configured from the environment. Secrets live under
the 'retail/' KV v2 mount path and are cached per process once read.

Misconfiguration (missing env vars, denied paths) fails fast with
ValueError/PermissionError. An unreachable or slow Vault is an
InfrastructureError, the same as any other backing service.
"""

import os
import logging
import threading
from typing import Dict

import hvac
import requests
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized, VaultDown

from core.exceptions import InfrastructureError

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "retail"
_DEFAULT_TIMEOUT_SECONDS = 10

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}
_lock = threading.Lock()


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultClient:
    """AppRole-authenticated reader for secrets under retail/."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Read configuration from the environment and log in.

        Args:
            vault_addr: Overrides VAULT_ADDR
            vault_namespace: Overrides VAULT_NAMESPACE
            timeout_seconds: Overrides VAULT_TIMEOUT_SECONDS (default 10)

        Raises:
            ValueError: Required environment variable missing
            PermissionError: AppRole login rejected
            InfrastructureError: Vault unreachable or timed out
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.role_id = os.getenv("VAULT_ROLE_ID")
        self.secret_id = os.getenv("VAULT_SECRET_ID")
        self.timeout_seconds = timeout_seconds or float(
            os.getenv("VAULT_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT_SECONDS)
        )

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not self.role_id or not self.secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        self.client = hvac.Client(
            url=self.vault_addr,
            namespace=self.vault_namespace,
            timeout=self.timeout_seconds,
        )
        self._login()

        logger.info(f"Vault client ready: {self.vault_addr}")

    def _login(self) -> None:
        try:
            response = self.client.auth.approle.login(
                role_id=self.role_id,
                secret_id=self.secret_id,
            )
        except (requests.RequestException, VaultDown) as e:
            raise InfrastructureError(f"Vault unreachable at {self.vault_addr}") from e
        except (Unauthorized, Forbidden, InvalidPath) as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}") from e

        self.client.token = response["auth"]["client_token"]
        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of a KV v2 secret under retail/.

        Args:
            path: Secret path relative to retail/ (e.g. 'database')
            field: Field within the secret (e.g. 'url')

        Raises:
            PermissionError: Path missing or access denied
            KeyError: Field not present in the secret
            InfrastructureError: Vault unreachable or timed out
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}") from e
        except (requests.RequestException, VaultDown) as e:
            raise InfrastructureError(f"Vault unreachable reading '{full_path}'") from e

        data = response["data"]["data"]
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{full_path}'. "
                f"Available: {', '.join(data)}"
            )
        return data[field]


def _cached_secret(path: str, field: str) -> str:
    cache_key = f"{_SECRET_PREFIX}/{path}/{field}"
    with _lock:
        if cache_key not in _secret_cache:
            _secret_cache[cache_key] = _ensure_vault_client().get_secret(path, field)
        return _secret_cache[cache_key]


def get_database_url() -> str:
    """PostgreSQL connection URL for the invoice store."""
    return _cached_secret("database", "url")


def get_valkey_url() -> str:
    """Valkey URL backing the invoice number counter."""
    return _cached_secret("valkey", "url")

"""Tests for VaultClient - HashiCorp Vault secrets management."""

import pytest
import requests
from unittest.mock import MagicMock, patch

from hvac.exceptions import Forbidden, InvalidPath

from core.exceptions import InfrastructureError

import clients.vault_client as vault_module
from clients.vault_client import VaultClient, get_database_url, get_valkey_url


@pytest.fixture
def vault_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.local:8200")
    monkeypatch.setenv("VAULT_ROLE_ID", "role")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)


@pytest.fixture
def hvac_client(vault_env):
    """Patched hvac.Client with a successful AppRole login."""
    client = MagicMock()
    client.auth.approle.login.return_value = {"auth": {"client_token": "s.token"}}
    client.is_authenticated.return_value = True
    client.secrets.kv.v2.read_secret_version.return_value = {
        "data": {"data": {"url": "postgresql://retail@db:5432/retail"}}
    }
    with patch("hvac.Client", return_value=client):
        yield client


@pytest.fixture
def fresh_cache():
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()
    yield
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, monkeypatch):
        """VAULT_ADDR required."""
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        with pytest.raises(ValueError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, vault_env, monkeypatch):
        """VAULT_ROLE_ID and VAULT_SECRET_ID required."""
        monkeypatch.delenv("VAULT_SECRET_ID")
        with pytest.raises(ValueError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_invalid_approle_raises_permission_error(self, hvac_client):
        """Failed AppRole login is a PermissionError."""
        hvac_client.auth.approle.login.side_effect = Forbidden("permission denied")
        with pytest.raises(PermissionError, match="authentication"):
            VaultClient()

    def test_valid_approle_authenticates(self, hvac_client):
        """Token from the login is installed on the client."""
        client = VaultClient()
        assert client.client.token == "s.token"

    def test_unreachable_vault_is_infrastructure_error(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = requests.ConnectionError("refused")
        with pytest.raises(InfrastructureError, match="unreachable"):
            VaultClient()

    def test_timeout_from_environment(self, hvac_client, monkeypatch):
        monkeypatch.setenv("VAULT_TIMEOUT_SECONDS", "2.5")
        with patch("hvac.Client", return_value=hvac_client) as client_cls:
            VaultClient()
        assert client_cls.call_args.kwargs["timeout"] == 2.5


class TestGetSecret:
    """Secret retrieval - paths automatically scoped to retail/."""

    def test_returns_field_value(self, hvac_client):
        url = VaultClient().get_secret("database", "url")

        assert url == "postgresql://retail@db:5432/retail"
        kwargs = hvac_client.secrets.kv.v2.read_secret_version.call_args.kwargs
        assert kwargs["path"] == "retail/database"

    def test_missing_path_raises(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath()
        with pytest.raises(PermissionError, match="not found"):
            VaultClient().get_secret("nonexistent", "field")

    def test_missing_field_raises_keyerror(self, hvac_client):
        with pytest.raises(KeyError, match="not found"):
            VaultClient().get_secret("database", "nonexistent_field")

    def test_read_timeout_is_infrastructure_error(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = requests.Timeout()
        with pytest.raises(InfrastructureError):
            VaultClient().get_secret("database", "url")


class TestConvenienceFunctions:
    """Module-level convenience functions."""

    def test_get_database_url_cached(self, hvac_client, fresh_cache):
        assert get_database_url() == "postgresql://retail@db:5432/retail"
        assert get_database_url() == "postgresql://retail@db:5432/retail"
        hvac_client.secrets.kv.v2.read_secret_version.assert_called_once()

    def test_get_valkey_url(self, hvac_client, fresh_cache):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = {
            "data": {"data": {"url": "redis://valkey:6379/0"}}
        }
        assert get_valkey_url() == "redis://valkey:6379/0"
        kwargs = hvac_client.secrets.kv.v2.read_secret_version.call_args.kwargs
        assert kwargs["path"] == "retail/valkey"

"""
Azure Key Vault configuration for secure credential management
"""

import os
import json
import logging
from typing import Optional
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential
from azure.keyvault.secrets import SecretClient

from .exceptions import ConfigurationError
from .site_context import SiteRegistry

logger = logging.getLogger(__name__)


class KeyVaultConfig:
    """Manages Azure Key Vault integration for credentials and site settings."""

    def __init__(self, keyvault_url: Optional[str] = None):
        """
        Initialize Key Vault client.

        Args:
            keyvault_url: URL of the Key Vault (e.g., https://myvault.vault.azure.net/)
                         If not provided, will try to get from environment
        """
        self.keyvault_url = keyvault_url or os.environ.get('KEY_VAULT_URL')
        self.client = None

        if self.keyvault_url:
            try:
                # Managed identity first (Azure deployment)
                credential = ManagedIdentityCredential()
                self.client = SecretClient(
                    vault_url=self.keyvault_url,
                    credential=credential
                )
                logger.info("Initialized Key Vault client with Managed Identity")
            except Exception as e:
                logger.warning(f"Managed Identity failed, trying DefaultAzureCredential: {e}")
                try:
                    credential = DefaultAzureCredential()
                    self.client = SecretClient(
                        vault_url=self.keyvault_url,
                        credential=credential
                    )
                    logger.info("Initialized Key Vault client with DefaultAzureCredential")
                except Exception as e:
                    logger.error(f"Failed to initialize Key Vault client: {e}")
                    self.client = None

    def get_secret(self, secret_name: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get secret from environment variable or Key Vault.

        Args:
            secret_name: Name of the secret in Key Vault
            default: Default value if secret not found

        Returns:
            Secret value or default
        """
        env_value = os.environ.get(secret_name)
        if env_value:
            return env_value

        if self.client:
            try:
                secret = self.client.get_secret(secret_name)
                return secret.value
            except Exception as e:
                logger.warning(f"Failed to get secret {secret_name} from Key Vault: {e}")

        return default

    def _get_either(self, name: str) -> Optional[str]:
        # Key Vault only allows dashes, app settings usually use underscores
        return self.get_secret(name) or self.get_secret(name.replace('-', '_'))

    def get_adminservice_credentials(self) -> dict:
        """
        Get the Azure AD app registration used to call the AdminService.

        Returns:
            Dictionary with tenant_id, client_id, client_secret and api_scope

        Raises:
            ConfigurationError if required credentials are missing
        """
        credentials = {
            'tenant_id': self._get_either('CONFIGMGR-TENANT-ID'),
            'client_id': self._get_either('CONFIGMGR-CLIENT-ID'),
            'client_secret': self._get_either('CONFIGMGR-CLIENT-SECRET')
        }

        missing = [k for k, v in credentials.items() if not v]
        if missing:
            raise ConfigurationError(f"Missing AdminService credentials: {', '.join(missing)}")

        api_scope = self._get_either('CONFIGMGR-API-SCOPE')
        if api_scope:
            credentials['api_scope'] = api_scope

        return credentials

    def get_site_registry(self) -> SiteRegistry:
        """
        Load the site code to AdminService server map.

        Raises:
            ConfigurationError if the map is missing or not valid JSON
        """
        raw_sites = self._get_either('CONFIGMGR-SITES')
        if not raw_sites:
            raise ConfigurationError("Missing CONFIGMGR-SITES configuration")

        try:
            sites = json.loads(raw_sites)
        except ValueError as e:
            raise ConfigurationError(f"CONFIGMGR-SITES is not valid JSON: {e}")

        return SiteRegistry(sites)

    def get_api_key(self) -> Optional[str]:
        """
        Get API key for function authentication.

        Returns:
            API key or None if not configured
        """
        return self._get_either('API-KEY')

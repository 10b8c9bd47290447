"""
Azure Key Vault certificate store.

Reads the stored certificate's metadata and imports renewed PFX
bundles. The SDK client is synchronous; calls run in a worker thread.
"""

import asyncio
import base64
import logging

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.keyvault.certificates import CertificateClient

from models.certificate import CertificateDescriptor

logger = logging.getLogger(__name__)


class KeyVaultError(Exception):
    """Base exception for Key Vault operations."""

    def __init__(self, message: str, certificate_name: str = None, suggestion: str = None):
        self.message = message
        self.certificate_name = certificate_name
        self.suggestion = suggestion
        super().__init__(message)


class MetadataQueryError(KeyVaultError):
    """Certificate metadata could not be read."""

    pass


class CertificateImportError(KeyVaultError):
    """Certificate import was rejected or failed."""

    pass


def build_credential(tenant_id: str = "", client_id: str = "", client_secret: str = ""):
    """Return an Azure credential using service principal or default chain."""
    if tenant_id and client_id and client_secret:
        return ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )
    return DefaultAzureCredential()


class KeyVaultCertificateStore:
    """Certificate metadata lookup and PFX import for one vault."""

    def __init__(self, vault_url: str, credential=None, client: CertificateClient | None = None):
        self.vault_url = vault_url
        self._client = client or CertificateClient(vault_url=vault_url, credential=credential or build_credential())

    async def get_certificate_metadata(self, name: str) -> CertificateDescriptor | None:
        """
        Fetch the descriptor of the current certificate version.

        Returns:
            CertificateDescriptor, or None when the vault has no such certificate

        Raises:
            MetadataQueryError: on any other failure
        """
        try:
            certificate = await asyncio.to_thread(self._client.get_certificate, name)
        except ResourceNotFoundError:
            logger.info(f"Certificate {name} not found in {self.vault_url}")
            return None
        except AzureError as e:
            raise MetadataQueryError(
                f"Failed to get certificate {name}: {e}",
                certificate_name=name,
                suggestion="Check vault access permissions (certificates/get)",
            )

        properties = certificate.properties
        if properties is None:
            return CertificateDescriptor(name=name)

        return CertificateDescriptor(
            name=name,
            expires_on=properties.expires_on,
            not_before=properties.not_before,
            enabled=properties.enabled,
            version=properties.version,
        )

    async def import_certificate(self, name: str, base64_bundle: str, password: str) -> None:
        """
        Import a base64 encoded PFX bundle as a new version of name.

        The password is sent as given; an empty password is sent as an
        empty string rather than omitted.

        Raises:
            CertificateImportError: when the vault rejects the import
        """
        # The SDK applies its own base64 transport encoding to raw bytes
        pfx_data = base64.b64decode(base64_bundle)

        try:
            certificate = await asyncio.to_thread(
                self._client.import_certificate, name, pfx_data, password=password
            )
        except AzureError as e:
            raise CertificateImportError(
                f"Failed to import certificate {name}: {e}",
                certificate_name=name,
                suggestion="Check vault access permissions (certificates/import) and the PFX password",
            )

        version = certificate.properties.version if certificate.properties else None
        logger.info(f"Imported certificate {name} into {self.vault_url} (version {version})")

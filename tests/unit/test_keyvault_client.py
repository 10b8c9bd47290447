"""
Unit tests for the Key Vault certificate store.

The SDK CertificateClient is replaced by a MagicMock.
"""

import base64
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from core.keyvault_client import (
    CertificateImportError,
    KeyVaultCertificateStore,
    MetadataQueryError,
    build_credential,
)

VAULT_URL = "https://my-vault.vault.azure.net/"
EXPIRES = datetime(2026, 12, 1, tzinfo=timezone.utc)


@pytest.fixture
def sdk_client():
    return MagicMock()


@pytest.fixture
def store(sdk_client):
    return KeyVaultCertificateStore(VAULT_URL, client=sdk_client)


def sdk_certificate(**properties):
    values = dict(expires_on=EXPIRES, not_before=None, enabled=True, version="abc123")
    values.update(properties)
    return SimpleNamespace(properties=SimpleNamespace(**values))


class TestGetCertificateMetadata:

    @pytest.mark.asyncio
    async def test_descriptor_mapped(self, store, sdk_client):
        sdk_client.get_certificate.return_value = sdk_certificate()

        descriptor = await store.get_certificate_metadata("web")

        sdk_client.get_certificate.assert_called_once_with("web")
        assert descriptor.name == "web"
        assert descriptor.expires_on == EXPIRES
        assert descriptor.enabled is True
        assert descriptor.version == "abc123"

    @pytest.mark.asyncio
    async def test_missing_expiry(self, store, sdk_client):
        sdk_client.get_certificate.return_value = sdk_certificate(expires_on=None)

        descriptor = await store.get_certificate_metadata("web")

        assert descriptor.expires_on is None

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self, store, sdk_client):
        sdk_client.get_certificate.side_effect = ResourceNotFoundError("Certificate not found: web")

        assert await store.get_certificate_metadata("web") is None

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, store, sdk_client):
        sdk_client.get_certificate.side_effect = HttpResponseError("Forbidden")

        with pytest.raises(MetadataQueryError) as exc_info:
            await store.get_certificate_metadata("web")

        assert exc_info.value.certificate_name == "web"
        assert exc_info.value.suggestion


class TestImportCertificate:

    @pytest.mark.asyncio
    async def test_raw_bundle_and_password_sent(self, store, sdk_client):
        sdk_client.import_certificate.return_value = sdk_certificate()
        bundle = b"\x30\x82pfx-bytes"

        await store.import_certificate("web", base64.b64encode(bundle).decode(), "s3cret")

        sdk_client.import_certificate.assert_called_once_with("web", bundle, password="s3cret")

    @pytest.mark.asyncio
    async def test_empty_password_sent_as_empty_string(self, store, sdk_client):
        sdk_client.import_certificate.return_value = sdk_certificate()

        await store.import_certificate("web", base64.b64encode(b"pfx").decode(), "")

        assert sdk_client.import_certificate.call_args.kwargs["password"] == ""

    @pytest.mark.asyncio
    async def test_rejected_import(self, store, sdk_client):
        sdk_client.import_certificate.side_effect = HttpResponseError("Bad PFX password")

        with pytest.raises(CertificateImportError, match="Failed to import certificate web"):
            await store.import_certificate("web", base64.b64encode(b"pfx").decode(), "pw")


class TestBuildCredential:

    def test_service_principal(self):
        with patch("core.keyvault_client.ClientSecretCredential") as secret_credential:
            credential = build_credential("tenant", "client", "secret")

        secret_credential.assert_called_once_with(tenant_id="tenant", client_id="client", client_secret="secret")
        assert credential is secret_credential.return_value

    def test_default_chain(self):
        with patch("core.keyvault_client.DefaultAzureCredential") as default_credential:
            credential = build_credential("tenant", "", "")

        assert credential is default_credential.return_value

"""
Certificate renewal orchestrator.

Runs one renewal cycle: check the stored certificate's expiry, and
when renewal is due obtain a new certificate, convert it to PFX and
import it into Key Vault.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from core.acme_client import parse_certificate
from core.bundle_converter import BundleConversionError, convert_to_pfx
from core.expiry_policy import needs_renewal, renewal_date
from core.keyvault_client import MetadataQueryError
from models.certificate import CertificateBundle, CertificateDescriptor, CycleOutcome, ObtainedCertificate

logger = logging.getLogger(__name__)


class CertificateIssuer(Protocol):
    async def obtain(self, domains: list[str]) -> ObtainedCertificate: ...


class CertificateVault(Protocol):
    async def get_certificate_metadata(self, name: str) -> CertificateDescriptor | None: ...

    async def import_certificate(self, name: str, base64_bundle: str, password: str) -> None: ...


class RenewalError(Exception):
    """Base exception for a failed renewal cycle."""

    stage = "renewal"

    def __init__(self, message: str, domains: list[str] = None, suggestion: str = None):
        self.message = message
        self.domains = domains or []
        self.suggestion = suggestion
        super().__init__(message)


class ObtainFailed(RenewalError):
    """The ACME client could not obtain a certificate."""

    stage = "obtain"


class ConversionFailed(RenewalError):
    """The obtained PEM materials could not be converted to PFX."""

    stage = "convert"


class UploadFailed(RenewalError):
    """The PFX bundle could not be imported into Key Vault."""

    stage = "upload"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenewalOrchestrator:
    """
    Expiry check, obtain, convert and upload for one certificate.

    run_cycle() may be called any number of times; every call starts by
    re-reading the stored certificate, so a renewed certificate makes
    the next call skip.
    """

    def __init__(
        self,
        domains: list[str],
        certificate_name: str,
        pfx_password: str,
        renew_before_days: int,
        issuer: CertificateIssuer,
        vault: CertificateVault,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not domains:
            raise ValueError("at least one domain is required")
        self.domains = list(domains)
        self.certificate_name = certificate_name
        self.pfx_password = pfx_password
        self.renew_before_days = renew_before_days
        self.issuer = issuer
        self.vault = vault
        self.clock = clock

    async def _renewal_due(self) -> bool:
        try:
            descriptor = await self.vault.get_certificate_metadata(self.certificate_name)
        except MetadataQueryError as e:
            logger.warning(f"Error checking certificate renewal, renewing anyway: {e.message}")
            return True

        if descriptor is None or descriptor.expires_on is None:
            logger.info(f"Certificate {self.certificate_name} is missing or has no expiration date, renewal needed")
            return True

        due = needs_renewal(descriptor, self.renew_before_days, self.clock())
        threshold = renewal_date(descriptor.expires_on, self.renew_before_days)
        if due:
            logger.info(
                f"Certificate will expire on {descriptor.expires_on}, renewal needed "
                f"(threshold: {self.renew_before_days} days, since {threshold})"
            )
        else:
            logger.info(
                f"Certificate valid until {descriptor.expires_on} "
                f"(renewal threshold: {self.renew_before_days} days before expiration, at {threshold})"
            )
        return due

    async def run_cycle(self) -> CycleOutcome:
        """
        Run one renewal cycle.

        Returns:
            CycleOutcome.SKIPPED when the stored certificate is still valid,
            CycleOutcome.RENEWED after a successful import

        Raises:
            ObtainFailed, ConversionFailed, UploadFailed: the failing stage;
            nothing has been written to Key Vault unless upload was reached
        """
        if not await self._renewal_due():
            logger.info("Certificate is still valid and not due for renewal")
            return CycleOutcome.SKIPPED

        try:
            obtained = await self.issuer.obtain(self.domains)
        except Exception as e:
            raise ObtainFailed(
                f"Error obtaining certificate: {e}",
                domains=self.domains,
                suggestion=getattr(e, "suggestion", None),
            ) from e

        try:
            pfx_data = convert_to_pfx(obtained.certificate_pem, obtained.private_key_pem, self.pfx_password)
        except BundleConversionError as e:
            raise ConversionFailed(
                f"Error converting to PFX: {e.message}", domains=self.domains, suggestion=e.suggestion
            ) from e

        bundle = CertificateBundle(data=pfx_data, password=self.pfx_password)

        try:
            await self.vault.import_certificate(self.certificate_name, bundle.base64, bundle.password)
        except Exception as e:
            raise UploadFailed(
                f"Error uploading to Key Vault: {e}",
                domains=self.domains,
                suggestion=getattr(e, "suggestion", None),
            ) from e

        try:
            not_after = parse_certificate(obtained.certificate_pem)["not_after"]
            logger.info(f"Successfully processed certificates for domains: {self.domains} (valid until {not_after})")
        except ValueError:
            logger.info(f"Successfully processed certificates for domains: {self.domains}")
        return CycleOutcome.RENEWED

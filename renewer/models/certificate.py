"""
Certificate models for the renewal pipeline.

Pydantic models for the Key Vault certificate descriptor and the
transient materials passed between pipeline stages.
"""

import base64
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CycleOutcome(str, Enum):
    """Observable result of a successful renewal cycle."""
    SKIPPED = "skipped"    # Certificate still valid, nothing issued
    RENEWED = "renewed"    # New certificate obtained and imported


class CertificateDescriptor(BaseModel):
    """
    Metadata of the certificate stored in Key Vault.

    Only the expiry drives renewal; the remaining fields are
    informational and used in log output.
    """
    name: str = Field(..., description="Certificate object name in Key Vault")
    expires_on: Optional[datetime] = Field(None, description="Certificate expiry date")
    not_before: Optional[datetime] = Field(None, description="Certificate valid from")
    enabled: Optional[bool] = Field(None, description="Whether the Key Vault object is enabled")
    version: Optional[str] = Field(None, description="Key Vault certificate version")


class ObtainedCertificate(BaseModel):
    """PEM materials returned by the ACME client for one order."""
    certificate_pem: bytes = Field(..., description="Leaf certificate followed by intermediates")
    private_key_pem: bytes = Field(..., description="Private key of the leaf certificate")
    domains: List[str] = Field(default_factory=list, description="Domains covered by the order")


class CertificateBundle(BaseModel):
    """PFX bundle ready for import."""
    data: bytes = Field(..., description="PKCS#12 encoded key and certificate chain")
    password: str = Field(default="", description="Password protecting the bundle, may be empty")

    @property
    def base64(self) -> str:
        """Base64 transport form expected by the Key Vault import API."""
        return base64.b64encode(self.data).decode("ascii")

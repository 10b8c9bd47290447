"""
Global test fixtures.

Provides a throwaway PKI (root, two intermediates and a leaf) and
pre-configured fakes for the renewal pipeline's collaborators.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def issue_certificate(subject_cn, subject_key, issuer_cn, issuer_key, ca=False, days=90, dns_names=None):
    """Sign a certificate for subject_key with issuer_key."""
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn))
        .issuer_name(_name(issuer_cn))
        .public_key(subject_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in dns_names]), critical=False
        )
    return builder.sign(issuer_key, hashes.SHA256())


def cert_to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def key_to_pem(key, fmt=serialization.PrivateFormat.TraditionalOpenSSL) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=fmt,
        encryption_algorithm=serialization.NoEncryption(),
    )


@dataclass
class SamplePKI:
    leaf_key: rsa.RSAPrivateKey
    leaf: x509.Certificate
    intermediate1: x509.Certificate
    intermediate2: x509.Certificate
    root: x509.Certificate

    @property
    def chain_pem(self) -> bytes:
        """Leaf first, then intermediates in issuing order."""
        return cert_to_pem(self.leaf) + cert_to_pem(self.intermediate1) + cert_to_pem(self.intermediate2)

    @property
    def leaf_pem(self) -> bytes:
        return cert_to_pem(self.leaf)

    @property
    def pkcs1_key_pem(self) -> bytes:
        return key_to_pem(self.leaf_key, serialization.PrivateFormat.TraditionalOpenSSL)

    @property
    def pkcs8_key_pem(self) -> bytes:
        return key_to_pem(self.leaf_key, serialization.PrivateFormat.PKCS8)


@pytest.fixture(scope="session")
def pki() -> SamplePKI:
    """Root -> intermediate2 -> intermediate1 -> leaf chain for example.com."""
    root_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    int2_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    int1_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    root = issue_certificate("Test Root", root_key, "Test Root", root_key, ca=True, days=3650)
    intermediate2 = issue_certificate("Test Intermediate 2", int2_key, "Test Root", root_key, ca=True, days=1825)
    intermediate1 = issue_certificate(
        "Test Intermediate 1", int1_key, "Test Intermediate 2", int2_key, ca=True, days=1825
    )
    leaf = issue_certificate(
        "example.com",
        leaf_key,
        "Test Intermediate 1",
        int1_key,
        days=90,
        dns_names=["example.com", "www.example.com"],
    )
    return SamplePKI(leaf_key=leaf_key, leaf=leaf, intermediate1=intermediate1, intermediate2=intermediate2, root=root)


@pytest.fixture(scope="session")
def ec_key_pem() -> bytes:
    """PKCS#8 PEM of a non-RSA key."""
    return key_to_pem(ec.generate_private_key(ec.SECP256R1()), serialization.PrivateFormat.PKCS8)


@pytest.fixture
def mock_vault():
    """Key Vault store reporting no stored certificate."""
    vault = MagicMock()
    vault.get_certificate_metadata = AsyncMock(return_value=None)
    vault.import_certificate = AsyncMock(return_value=None)
    return vault


@pytest.fixture
def mock_notifier():
    notifier = MagicMock()
    notifier.notify = AsyncMock(return_value=None)
    return notifier

"""
PEM to PFX conversion.

Turns the PEM key and certificate chain returned by the ACME client
into the password-protected PKCS#12 bundle Key Vault imports. All work
happens in memory; nothing is written to disk.
"""

import base64
import binascii
import logging
import re
from collections.abc import Iterator

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(rb"-----BEGIN ([^\r\n-]+)-----(.*?)-----END \1-----", re.DOTALL)

# SHA1/3DES with a SHA1 MAC imports everywhere, Key Vault and Windows included
_PFX_KDF_ROUNDS = 50000


class BundleConversionError(Exception):
    """Base exception for PEM to PFX conversion."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class MalformedKeyError(BundleConversionError):
    """No PEM block could be decoded from the private key input."""

    pass


class UnsupportedKeyFormatError(BundleConversionError):
    """Private key is neither PKCS#1 nor PKCS#8 RSA."""

    pass


class NoCertificatesFoundError(BundleConversionError):
    """Certificate input contains no PEM blocks."""

    pass


class MalformedCertificateError(BundleConversionError):
    """A PEM block in the certificate input is not an X.509 certificate."""

    pass


def iter_pem_blocks(data: bytes) -> Iterator[tuple[str, bytes]]:
    """
    Yield (label, der_bytes) for each PEM block in data.

    Text between blocks is ignored. Blocks whose body is not valid
    base64 are skipped and scanning continues with the next block.
    """
    for match in _PEM_BLOCK.finditer(data):
        label = match.group(1).decode("ascii", errors="replace")
        # Drop RFC 1421 headers such as Proc-Type before decoding the body
        body = b"".join(line.strip() for line in match.group(2).splitlines() if b":" not in line)
        try:
            yield label, base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            logger.debug(f"Skipping undecodable PEM block {label}")


def load_rsa_private_key(key_pem: bytes) -> rsa.RSAPrivateKey:
    """
    Load the first PEM block of key_pem as an RSA private key.

    Both PKCS#1 ("RSA PRIVATE KEY") and PKCS#8 ("PRIVATE KEY") bodies are
    accepted regardless of the block label.

    Raises:
        MalformedKeyError: no PEM block could be decoded
        UnsupportedKeyFormatError: the block is not an unencrypted RSA key
    """
    block = next(iter_pem_blocks(key_pem), None)
    if block is None:
        raise MalformedKeyError(
            "Failed to decode private key PEM", suggestion="Provide a PEM encoded RSA private key"
        )

    label, der = block
    try:
        private_key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise UnsupportedKeyFormatError(
            f"Failed to parse private key ({label}): neither PKCS#1 nor PKCS#8: {e}",
            suggestion="Provide an unencrypted PKCS#1 or PKCS#8 RSA key",
        ) from e

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise UnsupportedKeyFormatError(
            f"Parsed key is not RSA ({type(private_key).__name__})",
            suggestion="Request RSA certificates from the ACME server",
        )
    return private_key


def load_certificate_chain(cert_pem: bytes) -> list[x509.Certificate]:
    """
    Parse every PEM block of cert_pem as an X.509 certificate, in order.

    Raises:
        MalformedCertificateError: a decoded block is not a certificate
        NoCertificatesFoundError: the input has no PEM blocks
    """
    certificates = []
    for index, (label, der) in enumerate(iter_pem_blocks(cert_pem)):
        try:
            certificates.append(x509.load_der_x509_certificate(der))
        except ValueError as e:
            raise MalformedCertificateError(
                f"Failed to parse certificate #{index + 1} ({label}): {e}",
                suggestion="Check the certificate chain returned by the ACME server",
            ) from e

    if not certificates:
        raise NoCertificatesFoundError("No certificates found in PEM data")
    return certificates


def _encryption_for(password: str) -> serialization.KeySerializationEncryption:
    # cryptography rejects a zero-length PKCS#12 password, so "" means no encryption and no MAC
    if password == "":
        return serialization.NoEncryption()
    return (
        serialization.PrivateFormat.PKCS12.encryption_builder()
        .kdf_rounds(_PFX_KDF_ROUNDS)
        .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
        .hmac_hash(hashes.SHA1())
        .build(password.encode("utf-8"))
    )


def convert_to_pfx(cert_pem: bytes, key_pem: bytes, password: str) -> bytes:
    """
    Convert a PEM certificate chain and private key into a PFX bundle.

    The first certificate is the leaf; the rest form the CA chain in the
    order given. The chain is neither sorted nor verified. An empty
    password produces a bundle that loads without a password.

    Args:
        cert_pem: PEM leaf certificate followed by intermediates
        key_pem: PEM private key of the leaf
        password: Bundle password, may be empty

    Returns:
        DER encoded PKCS#12 bytes

    Raises:
        BundleConversionError: on any parse or encoding failure
    """
    private_key = load_rsa_private_key(key_pem)
    certificates = load_certificate_chain(cert_pem)
    leaf, chain = certificates[0], certificates[1:]

    try:
        pfx_data = pkcs12.serialize_key_and_certificates(
            name=None,
            key=private_key,
            cert=leaf,
            cas=chain or None,
            encryption_algorithm=_encryption_for(password),
        )
    except (ValueError, TypeError) as e:
        raise BundleConversionError(f"Failed to encode PFX: {e}") from e

    logger.debug(f"Encoded PFX bundle with leaf {leaf.subject.rfc4514_string()} and {len(chain)} CA certificate(s)")
    return pfx_data

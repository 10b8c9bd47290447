"""
ACME client for Let's Encrypt certificate issuance.

Provides account registration and HTTP-01 certificate orders using the
acme library. Challenge proofs are published through a
ChallengeResponder supplied at construction.
"""

import asyncio
import logging
from datetime import datetime, timedelta

import josepy as jose
from acme import challenges, client, messages
from acme import errors as acme_errors
from acme.client import ClientV2
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtensionOID, NameOID

from core.challenge_store import ChallengeResponder
from models.certificate import ObtainedCertificate

logger = logging.getLogger(__name__)

USER_AGENT = "keyvault-renewer/1.0"


class AcmeError(Exception):
    """Base exception for ACME operations."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class AcmeChallengeError(AcmeError):
    """ACME challenge failed."""

    pass


class AcmeOrderError(AcmeError):
    """ACME order failed."""

    pass


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def make_csr(private_key: rsa.RSAPrivateKey, domains: list[str]) -> bytes:
    """
    Create a CSR for the given domains.

    Args:
        private_key: Key of the future certificate
        domains: List of domain names, the first becomes the common name

    Returns:
        PEM-encoded CSR bytes
    """
    builder = x509.CertificateSigningRequestBuilder()
    builder = builder.subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))

    # Add Subject Alternative Names
    san_list = [x509.DNSName(domain) for domain in domains]
    builder = builder.add_extension(x509.SubjectAlternativeName(san_list), critical=False)

    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM)


class AcmeClient:
    """
    ACME protocol operations against one directory.

    The account key is generated once per process; register() must be
    called before obtain().
    """

    def __init__(
        self,
        directory_url: str,
        responder: ChallengeResponder,
        account_key: jose.JWK | None = None,
        validation_timeout: int = 300,
    ):
        self.directory_url = directory_url
        self.responder = responder
        self.validation_timeout = validation_timeout
        self._account_key = account_key or jose.JWKRSA(key=generate_rsa_key())
        self._client: ClientV2 | None = None
        self._registration: messages.RegistrationResource | None = None

    @property
    def registered(self) -> bool:
        return self._registration is not None

    async def _get_client(self) -> ClientV2:
        """Get or create ACME client."""
        if self._client:
            return self._client

        # Create client in thread pool (blocking network call)
        def create_client():
            net = client.ClientNetwork(self._account_key, user_agent=USER_AGENT)
            directory = messages.Directory.from_json(net.get(self.directory_url).json())
            return ClientV2(directory, net=net)

        self._client = await asyncio.to_thread(create_client)
        return self._client

    async def register(self, email: str | None = None) -> messages.RegistrationResource:
        """
        Register the ACME account or retrieve the existing one.

        Registering an already known account key is not an error; the
        existing registration is returned.

        Args:
            email: Contact email for the account (optional but recommended)
        """
        acme_client = await self._get_client()

        def do_registration():
            regr = messages.NewRegistration.from_data(terms_of_service_agreed=True)
            if email:
                regr = regr.update(contact=(f"mailto:{email}",))

            try:
                account_resource = acme_client.new_account(regr)
                logger.info("Created new ACME account")
                return account_resource
            except acme_errors.ConflictError as conflict:
                # Account already exists, query it by its location URL
                logger.info(f"ACME account already exists at {conflict.location}, retrieving")
                existing_regr = messages.RegistrationResource(uri=conflict.location, body=messages.Registration())
                return acme_client.query_registration(existing_regr)

        try:
            self._registration = await asyncio.to_thread(do_registration)
        except Exception as e:
            raise AcmeError(f"Failed to register ACME account: {e}", suggestion="Check the contact email")

        logger.info(f"ACME account registered for {email or 'anonymous contact'}")
        return self._registration

    def _http01_challenges(self, order: messages.OrderResource, key: jose.JWK) -> list[tuple]:
        """Pick the HTTP-01 challenge of every pending authorization."""
        selected = []
        for authz in order.authorizations:
            if authz.body.status == messages.STATUS_VALID:
                continue
            for challb in authz.body.challenges:
                if isinstance(challb.chall, challenges.HTTP01):
                    selected.append((challb, challb.chall.key_authorization(key)))
                    break
            else:
                raise AcmeChallengeError(
                    f"No HTTP-01 challenge found for {authz.body.identifier.value}",
                    suggestion="Server may only support DNS-01 challenges",
                )
        return selected

    async def obtain(self, domains: list[str]) -> ObtainedCertificate:
        """
        Obtain a certificate covering domains.

        Generates a fresh certificate key, answers HTTP-01 challenges via
        the responder, then finalizes the order. Presented tokens are
        always cleaned up, whether validation succeeds or not.

        Returns:
            ObtainedCertificate with the full chain and a PKCS#1 key
        """
        if not self.registered:
            raise AcmeError("ACME account is not registered", suggestion="Call register() before obtain()")

        acme_client = await self._get_client()

        private_key = generate_rsa_key()
        csr_pem = make_csr(private_key, domains)

        try:
            order = await asyncio.to_thread(acme_client.new_order, csr_pem)
            logger.info(f"Created ACME order for domains: {domains}")
        except Exception as e:
            raise AcmeOrderError(
                f"Failed to create order: {e}", suggestion="Check that all domains are valid and resolvable"
            )

        presented = []
        try:
            for challb, key_authz in self._http01_challenges(order, acme_client.net.key):
                token = challb.chall.encode("token")
                self.responder.present(token, key_authz)
                presented.append(token)

                response = challb.chall.response(acme_client.net.key)
                try:
                    await asyncio.to_thread(acme_client.answer_challenge, challb, response)
                except Exception as e:
                    raise AcmeChallengeError(
                        f"Failed to respond to challenge: {e}",
                        suggestion="Ensure port 80 of every domain reaches this service",
                    )
                logger.info(f"Responded to challenge for token {token}")

            deadline = datetime.now() + timedelta(seconds=self.validation_timeout)
            try:
                finalized = await asyncio.to_thread(acme_client.poll_and_finalize, order, deadline)
            except acme_errors.ValidationError as e:
                raise AcmeChallengeError(
                    f"Authorization failed: {e}",
                    suggestion="Check that the domain points to this server and port 80 is accessible",
                )
            except Exception as e:
                raise AcmeOrderError(
                    f"Failed to finalize order: {e}",
                    suggestion="Check that all authorizations completed successfully",
                )
        finally:
            for token in presented:
                self.responder.clean_up(token)

        private_key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

        logger.info(f"Successfully obtained certificate for {domains}")
        return ObtainedCertificate(
            certificate_pem=finalized.fullchain_pem.encode("utf-8"),
            private_key_pem=private_key_pem,
            domains=list(domains),
        )


def parse_certificate(cert_pem: bytes) -> dict:
    """
    Parse the first certificate of a PEM chain and extract details.

    Args:
        cert_pem: PEM-encoded certificate (further certificates are ignored)

    Returns:
        Dictionary with certificate details
    """
    cert = x509.load_pem_x509_certificates(cert_pem)[0]

    # Extract SANs
    alt_names = []
    try:
        san_ext = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
        alt_names = san_ext.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        pass

    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "serial_number": format(cert.serial_number, "x"),
        "not_before": cert.not_valid_before_utc,
        "not_after": cert.not_valid_after_utc,
        "alt_names": alt_names,
        "fingerprint_sha256": cert.fingerprint(hashes.SHA256()).hex(),
    }

"""
Key Vault ACME Renewer

Keeps a Let's Encrypt certificate for a set of domains valid inside an
Azure Key Vault. Answers ACME HTTP-01 challenges on its own HTTP
endpoint, renews the certificate ahead of expiry and imports it into
the vault as a PFX bundle.
"""

import asyncio
import logging
import os
import signal
import sys

from fastapi import FastAPI

from config import ConfigInvalid, Settings, load_settings
from core.acme_client import AcmeClient
from core.challenge_store import ChallengeTokenStore
from core.http_server import ChallengeHTTPServer
from core.keyvault_client import KeyVaultCertificateStore, build_credential
from core.notifier import build_notifier
from core.orchestrator import RenewalOrchestrator
from core.request_logger import RequestLoggerMiddleware
from core.scheduler import LifecycleController, LifecycleError
from endpoints import challenges, health

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)


def create_app(challenge_store: ChallengeTokenStore) -> FastAPI:
    """Build the HTTP responder serving health checks and ACME challenges."""
    app = FastAPI(
        title="Key Vault ACME Renewer",
        description="Health check and ACME HTTP-01 challenge responder.",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.challenge_store = challenge_store

    app.include_router(health.router)
    app.include_router(challenges.router)

    app.add_middleware(RequestLoggerMiddleware)
    return app


def build_controller(settings: Settings) -> LifecycleController:
    """Construct the collaborators described by settings and wire them together."""
    challenge_store = ChallengeTokenStore()

    acme = AcmeClient(directory_url=settings.directory_url, responder=challenge_store)

    vault = KeyVaultCertificateStore(
        vault_url=settings.vault_url,
        credential=build_credential(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
        ),
    )

    orchestrator = RenewalOrchestrator(
        domains=settings.domains,
        certificate_name=settings.azure_cert_name,
        pfx_password=settings.pfx_password,
        renew_before_days=settings.renew_before_days,
        issuer=acme,
        vault=vault,
    )

    server = ChallengeHTTPServer(
        create_app(challenge_store),
        host=settings.http_host,
        port=settings.http_port,
        grace_seconds=settings.shutdown_grace_seconds,
    )

    return LifecycleController(
        orchestrator=orchestrator,
        acme=acme,
        server=server,
        notifier=build_notifier(settings),
        contact_email=settings.email,
        check_interval=settings.check_interval,
        grace_seconds=settings.shutdown_grace_seconds,
    )


async def serve(settings: Settings) -> bool:
    """
    Run the service until SIGINT or SIGTERM.

    Returns:
        True when a renewal cycle was abandoned at shutdown
    """
    controller = build_controller(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, controller.request_shutdown)

    await controller.start()
    await controller.run()
    return controller.abandoned_cycle


def run_service(settings: Settings) -> bool:
    """
    Run serve() on a fresh event loop.

    Unlike asyncio.run(), closing the loop does not join the default
    executor, so a blocking ACME or Key Vault call left behind by an
    abandoned cycle cannot hold up shutdown.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(serve(settings))
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            asyncio.set_event_loop(None)
            loop.close()


def main() -> int:
    try:
        settings = load_settings()
    except ConfigInvalid as e:
        configure_logging()
        logger.error(e.message)
        if e.suggestion:
            logger.error(e.suggestion)
        return 1

    configure_logging(settings.log_level)
    logger.info(f"Using ACME directory {settings.directory_url} and Key Vault {settings.vault_url}")

    try:
        abandoned = run_service(settings)
    except LifecycleError as e:
        logger.error(e.message)
        return 1

    if abandoned:
        # Worker threads are non-daemon; interpreter exit would wait for them
        logger.warning("Exiting without waiting for the abandoned renewal cycle")
        logging.shutdown()
        os._exit(0)
    return 0


if __name__ == "__main__":
    sys.exit(main())

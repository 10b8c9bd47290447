"""
ACME HTTP-01 challenge endpoint.

Serves key authorizations from the challenge token store to the ACME
server's validators.
"""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.responses import PlainTextResponse, Response

from core.challenge_store import ChallengeTokenStore

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "/.well-known/acme-challenge"

router = APIRouter(prefix=CHALLENGE_PREFIX, tags=["ACME"])


def get_challenge_store(request: Request) -> ChallengeTokenStore:
    """Challenge token store attached to the running application."""
    return request.app.state.challenge_store


def _not_found() -> Response:
    return PlainTextResponse("404 page not found", status_code=404)


@router.get("/", include_in_schema=False)
async def empty_token() -> Response:
    return _not_found()


@router.get(
    "/{token}",
    summary="HTTP-01 Challenge Response",
    description="Returns the key authorization for a pending ACME challenge token.",
    response_class=Response,
    responses={404: {"description": "Unknown token"}},
)
async def challenge_response(token: str, store: ChallengeTokenStore = Depends(get_challenge_store)) -> Response:
    key_authorization, found = store.lookup(token)
    if not found:
        logger.debug(f"No pending challenge for token {token}")
        return _not_found()

    logger.info(f"Served challenge response for token {token}")
    return Response(content=key_authorization.encode("utf-8"), media_type="application/octet-stream")

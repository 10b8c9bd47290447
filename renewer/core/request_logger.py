"""
Access logging for the challenge responder.

ACME validation requests are logged with the token and the validator's
user agent; a miss is a warning because the order it belongs to will
fail. Other requests get a plain access line, liveness probes none.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("keyvault_renewer.access")

CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"

# Polled by the container runtime
_QUIET_PATHS = frozenset({"/healthz"})


def challenge_token(path: str) -> str | None:
    """Token named by a challenge path, "" for the bare prefix, None otherwise."""
    if not path.startswith(CHALLENGE_PATH_PREFIX):
        return None
    return path[len(CHALLENGE_PATH_PREFIX):]


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Log every request except liveness probes, flagging failed validations."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if path in _QUIET_PATHS:
            return await call_next(request)

        started = time.monotonic()
        response: Response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        client = request.client.host if request.client else "-"
        token = challenge_token(path)

        if token is None:
            logger.info(
                "%s %s %d %.1fms client=%s", request.method, path, response.status_code, elapsed_ms, client
            )
            return response

        level = logging.INFO if response.status_code == 200 else logging.WARNING
        logger.log(
            level,
            "acme-challenge token=%s %d %.1fms client=%s agent=%s",
            token or "-",
            response.status_code,
            elapsed_ms,
            client,
            request.headers.get("user-agent", "-"),
        )
        return response

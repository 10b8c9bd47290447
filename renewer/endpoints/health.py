"""Liveness endpoint."""

from fastapi import APIRouter
from starlette.responses import PlainTextResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/healthz",
    summary="Liveness Check",
    description="Returns 'ok' once the service has started.",
    response_class=PlainTextResponse,
)
async def healthz() -> PlainTextResponse:
    return PlainTextResponse("ok")

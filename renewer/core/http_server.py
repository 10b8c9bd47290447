"""
Embedded HTTP server for the challenge responder.

Runs the FastAPI application with uvicorn inside the service's event
loop so the renewal cycle and request handling share one process.
"""

import asyncio
import logging
from contextlib import contextmanager

import uvicorn

logger = logging.getLogger(__name__)


class HTTPServerError(Exception):
    """HTTP server could not be started."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the lifecycle controller."""

    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self):
        yield


class ChallengeHTTPServer:
    """Start and stop uvicorn serving the given ASGI application."""

    def __init__(self, app, host: str = "0.0.0.0", port: int = 80, grace_seconds: float = 5.0):
        self.host = host
        self.port = port
        self.grace_seconds = grace_seconds
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=int(grace_seconds) or 1,
        )
        self._server = _EmbeddedServer(self.config)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except SystemExit:
            # uvicorn exits the process when it cannot bind
            raise HTTPServerError(
                f"HTTP server failed to start on {self.host}:{self.port}",
                suggestion="Check that the port is free and the process may bind to it",
            ) from None

    async def start(self, startup_timeout: float = 10.0) -> None:
        """
        Start serving and wait until the socket is listening.

        Raises:
            HTTPServerError: when uvicorn stops or does not come up in time
        """
        self._task = asyncio.create_task(self._serve(), name="challenge-http-server")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + startup_timeout
        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                if isinstance(error, HTTPServerError):
                    raise error
                raise HTTPServerError(f"HTTP server stopped during startup: {error!r}")
            if loop.time() > deadline:
                self._task.cancel()
                raise HTTPServerError(f"HTTP server did not start within {startup_timeout}s")
            await asyncio.sleep(0.05)

        logger.info(f"HTTP server started on {self.host}:{self.port}")

    async def stop(self, grace_seconds: float | None = None) -> None:
        """
        Stop accepting connections and let in-flight requests finish.

        After the grace period the server is closed forcibly. Errors are
        logged only; the process is exiting anyway.
        """
        if self._task is None or self._task.done():
            return

        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        self._server.should_exit = True

        done, _ = await asyncio.wait({self._task}, timeout=grace)
        if not done:
            logger.warning(f"HTTP server did not stop within {grace}s, forcing close")
            self._server.force_exit = True
            self._task.cancel()
            await asyncio.wait({self._task}, timeout=1.0)
            return

        error = self._task.exception() if not self._task.cancelled() else None
        if error is not None:
            logger.warning(f"HTTP server stopped with error: {error}")
        else:
            logger.info("HTTP server stopped")

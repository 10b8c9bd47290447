"""
Certificate renewal scheduler and service lifecycle.

Registers the ACME account, starts the challenge responder, then runs
renewal cycles immediately and on every tick of a fixed interval until
a shutdown is requested.
"""

import asyncio
import logging
from datetime import timedelta
from enum import Enum

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.orchestrator import RenewalError, RenewalOrchestrator
from models.certificate import CycleOutcome

logger = logging.getLogger(__name__)

NOTIFICATION_SUBJECT = "Certificate Processing Error"


class LifecycleState(str, Enum):
    """Service lifecycle state."""
    STARTING = "starting"            # Registering account, starting HTTP responder
    RUNNING = "running"              # Executing renewal cycles
    SHUTTING_DOWN = "shutting_down"  # No new cycles, draining HTTP responder
    STOPPED = "stopped"              # Terminal


class LifecycleError(Exception):
    """The service could not start."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class LifecycleController:
    """
    Drive the renewal service through its lifecycle.

    Cycles run one at a time in a single loop that waits for either the
    next tick or a shutdown request. A tick that fires while a cycle is
    running is held and starts the next cycle once the current one ends.
    """

    def __init__(
        self,
        orchestrator: RenewalOrchestrator,
        acme,
        server,
        notifier,
        contact_email: str,
        check_interval: timedelta,
        grace_seconds: float = 5.0,
    ):
        self.orchestrator = orchestrator
        self.acme = acme
        self.server = server
        self.notifier = notifier
        self.contact_email = contact_email
        self.check_interval = check_interval
        self.grace_seconds = grace_seconds

        self.state = LifecycleState.STARTING
        self.cycles_run = 0
        self.abandoned_cycle = False
        self.scheduler: AsyncIOScheduler | None = None
        self._tick = asyncio.Event()
        self._stop = asyncio.Event()
        self._inflight: asyncio.Task | None = None

    async def start(self) -> None:
        """
        Register the ACME account and start the HTTP responder.

        Raises:
            LifecycleError: when either step fails; the service must not run
        """
        if self.state is not LifecycleState.STARTING:
            raise LifecycleError(f"Cannot start from state {self.state.value}")

        try:
            await self.acme.register(self.contact_email)
        except Exception as e:
            raise LifecycleError(
                f"Failed to register ACME account: {e}",
                suggestion="Check ACME directory reachability and the contact email",
            ) from e

        try:
            await self.server.start()
        except Exception as e:
            raise LifecycleError(
                f"Failed to start HTTP server: {e}",
                suggestion=getattr(e, "suggestion", None),
            ) from e

        logger.info(f"Starting certificate management for domains: {self.orchestrator.domains}")
        logger.info(
            f"Check interval: {self.check_interval}, "
            f"Renewal threshold: {self.orchestrator.renew_before_days} days"
        )

    def request_shutdown(self) -> None:
        """Ask the service to stop. Safe to call repeatedly and from signal handlers."""
        if not self._stop.is_set():
            logger.info("Shutting down...")
            self._stop.set()

    async def _on_tick(self) -> None:
        self._tick.set()

    def _start_ticker(self) -> None:
        self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self.scheduler.add_job(
            self._on_tick,
            IntervalTrigger(seconds=self.check_interval.total_seconds()),
            id="certificate_check",
            name="Certificate Check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()

    async def run(self) -> None:
        """
        Run cycles until shutdown, then shut down.

        Starts the service first when start() has not been called.
        """
        if self.state is LifecycleState.STARTING:
            await self.start()

        self.state = LifecycleState.RUNNING
        self._start_ticker()

        try:
            while not self._stop.is_set():
                self._tick.clear()
                if not await self._cycle_or_shutdown():
                    break
                if not await self._tick_or_shutdown():
                    break
        finally:
            await self.shutdown()

    async def _wait_first(self, primary: asyncio.Task) -> bool:
        """Wait for primary or the shutdown request; True when primary finished first."""
        stop = asyncio.create_task(self._stop.wait())
        try:
            done, _ = await asyncio.wait({primary, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        return primary in done

    async def _cycle_or_shutdown(self) -> bool:
        cycle = asyncio.create_task(self.run_cycle(), name="renewal-cycle")
        if await self._wait_first(cycle):
            return True
        self._inflight = cycle
        return False

    async def _tick_or_shutdown(self) -> bool:
        tick = asyncio.create_task(self._tick.wait())
        finished = await self._wait_first(tick)
        if not finished:
            tick.cancel()
        return finished

    async def run_cycle(self) -> CycleOutcome | None:
        """
        Run one orchestrator cycle, reporting any failure.

        Returns:
            The cycle outcome, or None when the cycle failed
        """
        self.cycles_run += 1
        try:
            outcome = await self.orchestrator.run_cycle()
        except RenewalError as e:
            logger.error(f"Error processing certificates ({e.stage}): {e.message}")
            await self._notify_failure(e)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error processing certificates: {e}")
            await self._notify_failure(e)
            return None

        logger.info(f"Certificate check finished: {outcome.value}")
        return outcome

    async def _notify_failure(self, error: Exception) -> None:
        body = (
            f"Error processing certificates for domains: {self.orchestrator.domains}\n\n"
            f"Error details:\n{error}"
        )
        suggestion = getattr(error, "suggestion", None)
        if suggestion:
            body += f"\n\nSuggestion: {suggestion}"

        try:
            await self.notifier.notify(NOTIFICATION_SUBJECT, body)
        except Exception as e:
            logger.warning(f"Failed to send error notification: {e}")

    async def shutdown(self) -> None:
        """
        Stop ticking, drain the HTTP responder and abandon a running cycle.

        The HTTP responder and an in-flight cycle share one grace period;
        errors are logged and ignored. A cycle still running at the
        deadline is cancelled and recorded in abandoned_cycle; its worker
        thread may keep running until the process exits.
        """
        if self.state is LifecycleState.STOPPED:
            return
        self.state = LifecycleState.SHUTTING_DOWN

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.grace_seconds

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        try:
            await self.server.stop(self.grace_seconds)
        except Exception as e:
            logger.warning(f"Error stopping HTTP server: {e}")

        if self._inflight is not None and not self._inflight.done():
            remaining = max(0.0, deadline - loop.time())
            done, _ = await asyncio.wait({self._inflight}, timeout=remaining)
            if not done:
                logger.warning("Abandoning in-flight renewal cycle")
                self.abandoned_cycle = True
                self._inflight.cancel()
                # Let the cancellation reach the task before the loop stops
                await asyncio.wait({self._inflight}, timeout=0.1)

        self.state = LifecycleState.STOPPED
        logger.info("Certificate renewal service stopped")

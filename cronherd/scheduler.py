"""Scheduler context: owns the claim directory and one driver task per job."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import TYPE_CHECKING

from cronherd.claims import ClaimDirectory
from cronherd.config import SchedulerConfig
from cronherd.driver import Clock, JobDriver, JobState, Sleep
from cronherd.errors import ClaimError, ConfigurationError
from cronherd.registration import parse_payload, resolve
from cronherd.schedule import validate_expression

if TYPE_CHECKING:
    from cronherd.registration import JobDefinition

logger = logging.getLogger(__name__)


class CronScheduler:
    """Runs registered jobs on their cron schedules inside the current event loop.

    Create one per host process at startup.  Every worker of a deployment
    that uses the same config shares the same claim directory, so each
    occurrence of a job runs in at most one of them.

    Lifecycle: ``register()`` any time, ``start()`` once the loop is running,
    ``stop()`` at shutdown.  ``wait()`` returns when stopped and re-raises a
    claim failure that halted the scheduler.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        claims: ClaimDirectory | None = None,
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or SchedulerConfig()
        self._claims = claims or ClaimDirectory(self._config.claim_dir)
        self._clock = clock
        self._sleep = sleep
        self._drivers: dict[str, JobDriver] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._halted = asyncio.Event()
        self._failure: BaseException | None = None
        self._running = False

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def claims(self) -> ClaimDirectory:
        return self._claims

    @property
    def running(self) -> bool:
        return self._running

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    def jobs(self) -> list[JobState]:
        """Return the state record of every registered job."""
        return [driver.state for driver in self._drivers.values()]

    def register(
        self,
        payload: object,
        *,
        default_identifier: str | None = None,
    ) -> list[JobDefinition]:
        """Register one or more jobs.  All-or-nothing: any invalid job rejects the whole payload.

        Callbacks are invoked synchronously on the event loop when their
        occurrence is claimed.  They must not block: anything slow belongs in
        a coroutine (return it and the driver schedules it) or a thread.

        Raises ``ConfigurationError`` (``ScheduleError`` for bad expressions).
        """
        definitions = resolve(
            parse_payload(payload),
            default_identifier=default_identifier or self._config.app_name,
        )
        for definition in definitions:
            if definition.identifier in self._drivers:
                msg = f"Schedule '{definition.identifier}' is already registered"
                raise ConfigurationError(msg)
            validate_expression(definition.schedule)

        now = int(self._clock())
        for definition in definitions:
            driver = JobDriver(
                JobState(definition=definition, reference=now),
                self._claims,
                claim_window=self._config.claim_window_seconds,
                clock=self._clock,
                sleep=self._sleep,
                on_failure=self._driver_failed,
                local_timezone=self._config.local_timezone,
            )
            self._drivers[definition.identifier] = driver
            logger.info(
                "Job registered: %s (%s, base=%s%s)",
                definition.identifier,
                definition.schedule,
                definition.base,
                ", all processes" if definition.all_proc else "",
            )
            if self._running:
                self._launch(driver)
        return definitions

    async def start(self) -> None:
        """Reap old orphaned claims (if configured) and start every job."""
        if self._running:
            return
        if self._config.reap_orphans_on_start:
            await asyncio.to_thread(
                self._claims.reap_orphans,
                now=self._clock(),
                grace=self._config.orphan_grace_seconds,
                window=self._config.claim_window_seconds,
            )
        self._running = True
        self._halted.clear()
        for driver in self._drivers.values():
            self._launch(driver)
        logger.info(
            "Scheduler started (%d jobs, mode=%s, claims=%s)",
            len(self._drivers),
            self._config.mode,
            self._claims.root,
        )

    async def stop(self) -> None:
        """Cancel every job and release the claims still held by this process."""
        was_running = self._running
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        try:
            for driver in self._drivers.values():
                await driver.close()
        finally:
            self._halted.set()
        if was_running:
            logger.info("Scheduler stopped")

    async def wait(self) -> None:
        """Block until the scheduler stops.  Re-raises the failure that halted it, if any."""
        await self._halted.wait()
        if self._failure is not None:
            raise self._failure

    async def serve(self) -> None:
        """Start, run until stopped or halted, then stop."""
        await self.start()
        try:
            await self.wait()
        finally:
            await self.stop()

    # -- internals --

    def _launch(self, driver: JobDriver) -> None:
        task = asyncio.create_task(driver.run(), name=f"cronherd:{driver.identifier}")
        self._tasks[driver.identifier] = task
        task.add_done_callback(functools.partial(self._driver_done, driver))

    def _driver_done(self, driver: JobDriver, task: asyncio.Task[None]) -> None:
        if self._tasks.get(driver.identifier) is task:
            del self._tasks[driver.identifier]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._driver_failed(driver, exc)

    def _driver_failed(self, driver: JobDriver, exc: BaseException) -> None:
        """A job chain died.  Claim failures halt the whole scheduler unless disabled."""
        logger.critical("Job %s halted: %s", driver.identifier, exc, exc_info=exc)
        task = self._tasks.get(driver.identifier)
        if task is not None and not task.done():
            task.cancel()
        if not isinstance(exc, ClaimError) or not self._config.halt_on_claim_error:
            return
        if self._failure is None:
            self._failure = exc
        self._halted.set()
        for other in list(self._tasks.values()):
            other.cancel()
        logger.critical("Scheduler halted by claim failure; refusing to run further jobs")

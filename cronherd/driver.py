"""Per-job driver: plan the next occurrence, wait for it, claim it, fire, repeat."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cronherd.claims import Claim, discard, release, try_acquire
from cronherd.log_context import set_log_context
from cronherd.schedule import next_time

if TYPE_CHECKING:
    from cronherd.claims import ClaimDirectory
    from cronherd.registration import JobDefinition

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
# Called with (driver, exception) when a release task dies.
FailureHandler = Callable[["JobDriver", BaseException], None]


@dataclass(slots=True)
class JobState:
    """Everything a driver carries from one cycle to the next."""

    definition: JobDefinition
    reference: int
    fired: int = 0
    skipped: int = 0


@dataclass(slots=True)
class Occurrence:
    """One planned firing.  ``claim`` is None for jobs that run in every process."""

    due: int
    claim: Claim | None = None


class JobDriver:
    """Runs one job's schedule -> wait -> claim -> fire cycle until cancelled.

    The cycle is a plain loop inside one asyncio task.  The callback runs
    synchronously on the event loop right after the claim is won, so it must
    not block; an awaitable result is scheduled as its own task.
    """

    def __init__(  # noqa: PLR0913
        self,
        state: JobState,
        claims: ClaimDirectory,
        *,
        claim_window: float,
        clock: Clock,
        sleep: Sleep,
        on_failure: FailureHandler,
        local_timezone: str = "",
    ) -> None:
        self._state = state
        self._claims = claims
        self._claim_window = claim_window
        self._clock = clock
        self._sleep = sleep
        self._on_failure = on_failure
        self._local_timezone = local_timezone
        self._releases: dict[asyncio.Task[None], Claim] = {}
        self._callbacks: set[asyncio.Future[object]] = set()

    @property
    def identifier(self) -> str:
        return self._state.definition.identifier

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def pending_releases(self) -> int:
        return len(self._releases)

    async def run(self) -> None:
        """Loop forever; each iteration handles exactly one occurrence."""
        set_log_context(job_id=self.identifier)
        while True:
            occurrence = self.plan_next()
            delay = max(occurrence.due - self._clock(), 0)
            try:
                await self._sleep(delay)
            except asyncio.CancelledError:
                self._abandon(occurrence)
                raise
            self.fire(occurrence)

    def plan_next(self) -> Occurrence:
        """Compute the next due time and, unless ``all_proc``, open its claim."""
        definition = self._state.definition
        due = next_time(
            definition.schedule,
            definition.base,
            self._state.reference,
            local_timezone=self._local_timezone,
        )
        self._state.reference = due
        set_log_context(due=due)
        claim = None
        if not definition.all_proc:
            claim = self._claims.open_claim(definition.identifier, due)
        logger.debug("Planned next run due=%d in %.0fs", due, due - self._clock())
        return Occurrence(due=due, claim=claim)

    def fire(self, occurrence: Occurrence) -> bool:
        """Claim *occurrence* and run the callback.  Returns False if another process won."""
        claim = occurrence.claim
        if claim is not None:
            if not try_acquire(claim):
                discard(claim)
                self._state.skipped += 1
                logger.debug("Claim held by another process, skipping")
                return False
            self._schedule_release(claim)
        self._state.fired += 1
        self._invoke()
        return True

    async def close(self) -> None:
        """Stop pending work and release every claim this driver still holds."""
        callbacks = list(self._callbacks)
        for future in callbacks:
            future.cancel()
        releases = list(self._releases.items())
        self._releases.clear()
        for task, _ in releases:
            task.cancel()
        if releases or callbacks:
            await asyncio.gather(
                *(task for task, _ in releases), *callbacks, return_exceptions=True
            )
        for _, claim in releases:
            if claim.locked and not claim.closed:
                release(claim)

    # -- internals --

    def _invoke(self) -> None:
        definition = self._state.definition
        logger.info("Running job %s", definition.identifier)
        try:
            result = definition.callback()
        except Exception:
            logger.exception("Job %s callback failed", definition.identifier)
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._callbacks.add(future)
            future.add_done_callback(self._callback_done)

    def _callback_done(self, future: asyncio.Future[object]) -> None:
        self._callbacks.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Job %s callback failed: %s", self.identifier, exc, exc_info=exc)

    def _schedule_release(self, claim: Claim) -> None:
        task = asyncio.create_task(
            self._release_later(claim), name=f"cronherd-release:{claim.path.name}"
        )
        self._releases[task] = claim
        task.add_done_callback(self._release_done)

    async def _release_later(self, claim: Claim) -> None:
        await self._sleep(self._claim_window)
        release(claim)

    def _release_done(self, task: asyncio.Task[None]) -> None:
        self._releases.pop(task, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._on_failure(self, exc)

    def _abandon(self, occurrence: Occurrence) -> None:
        """Drop the handle of an occurrence that never reached its due time."""
        claim = occurrence.claim
        if claim is not None and not claim.closed:
            discard(claim)

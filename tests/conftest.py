"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from cronherd.claims import ClaimDirectory
from cronherd.config import SchedulerConfig

# 2026-01-15 09:03:00 UTC
START = int(datetime(2026, 1, 15, 9, 3, tzinfo=UTC).timestamp())


class VirtualClock:
    """Wall clock plus a sleep that advances virtual time instead of waiting.

    Each sleep yields to the event loop exactly once, then moves the clock to
    at least the sleeper's wake-up time.  Concurrent sleepers interleave in
    FIFO order.
    """

    def __init__(self, start: float = START) -> None:
        self.start = int(start)
        self.now = float(start)
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        target = self.now + max(delay, 0)
        await asyncio.sleep(0)
        self.now = max(self.now, target)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def drain() -> Callable[..., Awaitable[None]]:
    """Let pending tasks run for a few event loop iterations."""

    async def _drain(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _drain


@pytest.fixture
def claim_root(tmp_path: Path) -> Path:
    """Claim directory for one test; not created up front."""
    return tmp_path / "claims" / "test"


@pytest.fixture
def claims(claim_root: Path) -> ClaimDirectory:
    return ClaimDirectory(claim_root)


@pytest.fixture
def config(tmp_path: Path) -> SchedulerConfig:
    """Config whose claim directory is ``claim_root``."""
    return SchedulerConfig(
        mode="test",
        claim_root=str(tmp_path / "claims"),
        reap_orphans_on_start=False,
    )

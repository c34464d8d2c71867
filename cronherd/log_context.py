"""Logging context: ContextVar-based log enrichment for job tasks.

Every log record is automatically enriched with a ``[job:due]`` prefix
via a `ContextFilter` attached to the root logger handlers.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar

# Propagated into every asyncio task created from a driver task.
ctx_job_id: ContextVar[str | None] = ContextVar("ctx_job_id", default=None)
ctx_due: ContextVar[int | None] = ContextVar("ctx_due", default=None)


class ContextFilter(logging.Filter):
    """Inject ContextVar values into every LogRecord as ``record.ctx``."""

    def filter(self, record: logging.LogRecord) -> bool:
        job = ctx_job_id.get(None)
        due = ctx_due.get(None)
        parts: list[str] = []
        if job:
            parts.append(job)
        if due is not None:
            parts.append(str(due))
        record.ctx = f"[{':'.join(parts)}] " if parts else ""
        return True


def set_log_context(*, job_id: str | None = None, due: int | None = None) -> None:
    """Set logging context for the current asyncio task.

    Each ``asyncio.create_task()`` copies the current context, so a release
    task spawned by a driver inherits the job prefix.
    """
    if job_id is not None:
        ctx_job_id.set(job_id)
    if due is not None:
        ctx_due.set(due)

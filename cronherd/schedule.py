"""Cron expression evaluation: next due time strictly after a reference instant."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime
from enum import StrEnum, unique
from zoneinfo import ZoneInfo

from cronsim import CronSim, CronSimError

from cronherd.config import resolve_timezone
from cronherd.errors import ConfigurationError, ScheduleError

logger = logging.getLogger(__name__)

_CRON_FIELDS = 5


@unique
class TimeBase(StrEnum):
    """Timezone interpretation of a schedule's wall-clock fields."""

    LOCAL = "local"
    UTC = "utc"


def parse_base(value: TimeBase | str) -> TimeBase:
    """Normalize a ``base`` setting, raising ``ConfigurationError`` on unknown values."""
    if isinstance(value, TimeBase):
        return value
    try:
        return TimeBase(str(value).strip().lower())
    except ValueError:
        msg = f"Unknown time base '{value}' (expected 'local' or 'utc')"
        raise ConfigurationError(msg) from None


def zone_for(base: TimeBase | str, local_timezone: str = "") -> ZoneInfo:
    if parse_base(base) is TimeBase.UTC:
        return ZoneInfo("UTC")
    return resolve_timezone(local_timezone)


def validate_expression(expression: str) -> None:
    """Raise ``ScheduleError`` unless *expression* is a 5-field cron expression."""
    if not isinstance(expression, str):
        msg = f"Cron expression must be a string, got {type(expression).__name__}"
        raise ScheduleError(msg)
    if len(expression.split()) != _CRON_FIELDS:
        msg = f"Cron expression '{expression}' must have exactly {_CRON_FIELDS} fields"
        raise ScheduleError(msg)
    try:
        next(CronSim(expression, datetime(2000, 1, 1)))
    except (CronSimError, StopIteration) as exc:
        msg = f"Invalid cron expression '{expression}': {exc}"
        raise ScheduleError(msg) from exc


def iter_times(
    expression: str,
    base: TimeBase | str,
    reference: int,
    *,
    local_timezone: str = "",
) -> Iterator[int]:
    """Yield successive due timestamps (epoch seconds) after *reference*.

    CronSim iterates naive wall-clock times in the resolved zone so that
    ``0 9 * * *`` means 09:00 on that zone's clock.  Each slot is re-attached
    with fold=0, which uses the offset in force before a transition:

    - a wall time inside a spring-forward gap (02:30 when clocks jump from
      02:00 to 03:00) still fires, at the real instant it maps to (03:30);
    - a slot that maps to or before the previous result is skipped.  Around a
      fall-back the repeated hour's slots all run once, on their first pass.

    The sequence is therefore strictly increasing.
    """
    validate_expression(expression)
    tz = zone_for(base, local_timezone)
    start = datetime.fromtimestamp(reference, tz).replace(tzinfo=None)
    it = CronSim(expression, start)
    last = reference
    while True:
        try:
            candidate = next(it)
        except (CronSimError, StopIteration) as exc:
            msg = f"Cron expression '{expression}' has no further occurrences"
            raise ScheduleError(msg) from exc
        due = int(candidate.replace(tzinfo=tz).timestamp())
        if due <= last:
            logger.debug("Skipping non-monotonic slot %s (%s)", candidate.isoformat(), tz.key)
            continue
        last = due
        yield due


def next_time(
    expression: str,
    base: TimeBase | str,
    reference: int,
    *,
    local_timezone: str = "",
) -> int:
    """Return the first instant strictly after *reference* at which *expression* is due."""
    return next(iter_times(expression, base, reference, local_timezone=local_timezone))

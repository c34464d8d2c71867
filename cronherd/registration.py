"""Job registration: classify the caller's payload once, then normalize it.

Two payload shapes are accepted:

- a single schedule, either ``("*/5 9-17 * * *", callback)`` or the one-item
  mapping ``{"*/5 9-17 * * *": callback}``; the job takes the scheduler's
  default identifier;
- a table mapping job identifiers to option mappings with the keys
  ``crontab``, ``code``, ``base`` and ``all_proc``.

``__test_key`` inside a table entry pins the job identifier, so tests can
predict claim file names.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from cronherd.claims import claim_name
from cronherd.errors import ConfigurationError
from cronherd.schedule import TimeBase, parse_base

logger = logging.getLogger(__name__)

JobCallback = Callable[[], object]

TEST_KEY = "__test_key"
_ENTRY_KEYS = frozenset({"crontab", "code", "base", "all_proc", TEST_KEY})
# NAME_MAX on common filesystems; due times stay 10 digits until 2286.
_MAX_CLAIM_NAME_BYTES = 255
_WIDEST_DUE = 10**10 - 1


@dataclass(frozen=True, slots=True)
class JobDefinition:
    """A registered job.  Immutable for the lifetime of the scheduler."""

    identifier: str
    schedule: str
    callback: JobCallback
    base: TimeBase = TimeBase.LOCAL
    all_proc: bool = False


@dataclass(frozen=True, slots=True)
class SingleSchedule:
    """One cron expression and its callback, registered under the default identifier."""

    expression: str
    callback: JobCallback


@dataclass(frozen=True, slots=True)
class ScheduleTable:
    """Job identifier -> option mapping."""

    entries: Mapping[str, Mapping[str, Any]]


RegistrationPayload = SingleSchedule | ScheduleTable


def parse_payload(raw: object) -> RegistrationPayload:
    """Classify a raw registration payload.  Raises ``ConfigurationError`` on unknown shapes."""
    if isinstance(raw, SingleSchedule | ScheduleTable):
        return raw
    if isinstance(raw, tuple) and len(raw) == 2 and callable(raw[1]):  # noqa: PLR2004
        return SingleSchedule(expression=raw[0], callback=raw[1])
    if isinstance(raw, Mapping) and raw:
        values = list(raw.values())
        if len(raw) == 1 and callable(values[0]):
            expression = next(iter(raw))
            return SingleSchedule(expression=expression, callback=values[0])
        if all(isinstance(v, Mapping) for v in values):
            return ScheduleTable(entries=raw)
    msg = "No schedules found: expected (crontab, callable) or a mapping of job definitions"
    raise ConfigurationError(msg)


def _entry_to_definition(identifier: str, entry: Mapping[str, Any]) -> JobDefinition:
    unknown = set(entry) - _ENTRY_KEYS
    if unknown:
        msg = f"Unknown parameter(s) for schedule {identifier}: {', '.join(sorted(unknown))}"
        raise ConfigurationError(msg)

    identifier = entry.get(TEST_KEY) or identifier
    crontab = entry.get("crontab")
    code = entry.get("code")
    if not isinstance(crontab, str):
        msg = f"crontab parameter for schedule {identifier} not a string"
        raise ConfigurationError(msg)
    if not callable(code):
        msg = f"code parameter for schedule {identifier} is not callable"
        raise ConfigurationError(msg)

    all_proc = entry.get("all_proc", False)
    if not isinstance(all_proc, bool):
        msg = f"all_proc parameter for schedule {identifier} must be a bool, got {all_proc!r}"
        raise ConfigurationError(msg)
    identifier = str(identifier)
    if len(claim_name(identifier, _WIDEST_DUE).encode()) > _MAX_CLAIM_NAME_BYTES:
        msg = f"Schedule identifier too long for a claim file name: {identifier[:40]}..."
        raise ConfigurationError(msg)

    return JobDefinition(
        identifier=identifier,
        schedule=crontab,
        callback=code,
        base=parse_base(entry.get("base") or TimeBase.LOCAL),
        all_proc=all_proc,
    )


def resolve(payload: RegistrationPayload, *, default_identifier: str) -> list[JobDefinition]:
    """Turn a classified payload into job definitions, validating every field."""
    if isinstance(payload, SingleSchedule):
        definitions = [
            _entry_to_definition(
                default_identifier,
                {"crontab": payload.expression, "code": payload.callback},
            )
        ]
    else:
        definitions = []
        for key, entry in payload.entries.items():
            if not isinstance(key, str) or not key:
                msg = f"Schedule identifier must be a non-empty string, got {key!r}"
                raise ConfigurationError(msg)
            definitions.append(_entry_to_definition(key, entry))

    seen: set[str] = set()
    for definition in definitions:
        if definition.identifier in seen:
            msg = f"Duplicate schedule identifier '{definition.identifier}'"
            raise ConfigurationError(msg)
        seen.add(definition.identifier)
    logger.debug("Registration resolved: %s", ", ".join(sorted(seen)))
    return definitions

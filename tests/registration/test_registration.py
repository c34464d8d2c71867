"""Tests for registration payload classification and normalization."""

from __future__ import annotations

from typing import Any

import pytest

from cronherd.errors import ConfigurationError
from cronherd.registration import (
    JobDefinition,
    ScheduleTable,
    SingleSchedule,
    parse_payload,
    resolve,
)
from cronherd.schedule import TimeBase


def _noop() -> None:
    pass


def _resolve(raw: Any, default: str = "myapp") -> list[JobDefinition]:
    return resolve(parse_payload(raw), default_identifier=default)


class TestParsePayload:
    def test_tuple_is_single_schedule(self) -> None:
        payload = parse_payload(("*/5 9-17 * * *", _noop))
        assert payload == SingleSchedule(expression="*/5 9-17 * * *", callback=_noop)

    def test_one_item_mapping_with_callable_is_single_schedule(self) -> None:
        payload = parse_payload({"*/5 9-17 * * *": _noop})
        assert isinstance(payload, SingleSchedule)
        assert payload.expression == "*/5 9-17 * * *"

    def test_mapping_of_mappings_is_table(self) -> None:
        payload = parse_payload({"sched1": {"crontab": "* * * * *", "code": _noop}})
        assert isinstance(payload, ScheduleTable)

    def test_already_classified_payload_passes_through(self) -> None:
        single = SingleSchedule(expression="* * * * *", callback=_noop)
        assert parse_payload(single) is single

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "* * * * *",
            [],
            ["* * * * *", _noop],
            {},
            {"sched1": 1},
            {"a": {"crontab": "* * * * *", "code": _noop}, "b": "oops"},
            ("* * * * *", "not callable"),
        ],
    )
    def test_unrecognized_shapes_raise(self, raw: Any) -> None:
        with pytest.raises(ConfigurationError, match="No schedules found"):
            parse_payload(raw)


class TestResolve:
    def test_single_schedule_uses_default_identifier(self) -> None:
        (job,) = _resolve(("*/5 9-17 * * *", _noop), default="myapp")
        assert job.identifier == "myapp"
        assert job.schedule == "*/5 9-17 * * *"
        assert job.callback is _noop
        assert job.base is TimeBase.LOCAL
        assert job.all_proc is False

    def test_table_entries(self) -> None:
        jobs = _resolve(
            {
                "sched1": {"base": "utc", "crontab": "*/10 15 * * *", "code": _noop},
                "sched2": {"crontab": "*/15 15 * * *", "code": _noop, "all_proc": True},
            }
        )
        by_id = {j.identifier: j for j in jobs}
        assert by_id["sched1"].base is TimeBase.UTC
        assert by_id["sched1"].all_proc is False
        assert by_id["sched2"].base is TimeBase.LOCAL
        assert by_id["sched2"].all_proc is True

    def test_test_key_overrides_identifier(self) -> None:
        (job,) = _resolve(
            {"sched1": {"crontab": "* * * * *", "code": _noop, "__test_key": "pinned"}}
        )
        assert job.identifier == "pinned"

    def test_crontab_must_be_string(self) -> None:
        with pytest.raises(ConfigurationError, match="not a string"):
            _resolve({"sched1": {"crontab": ["* * * * *"], "code": _noop}})

    def test_missing_crontab(self) -> None:
        with pytest.raises(ConfigurationError, match="not a string"):
            _resolve({"sched1": {"code": _noop}})

    def test_code_must_be_callable(self) -> None:
        with pytest.raises(ConfigurationError, match="not callable"):
            _resolve({"sched1": {"crontab": "* * * * *", "code": "print('hi')"}})

    def test_single_schedule_with_non_string_expression(self) -> None:
        with pytest.raises(ConfigurationError, match="not a string"):
            _resolve((5, _noop))

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown parameter"):
            _resolve({"sched1": {"crontab": "* * * * *", "code": _noop, "retries": 3}})

    def test_bad_base_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown time base"):
            _resolve({"sched1": {"crontab": "* * * * *", "code": _noop, "base": "gmt+1"}})

    def test_duplicate_identifier_after_override(self) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate"):
            _resolve(
                {
                    "a": {"crontab": "* * * * *", "code": _noop, "__test_key": "same"},
                    "b": {"crontab": "* * * * *", "code": _noop, "__test_key": "same"},
                }
            )

    def test_definitions_are_immutable(self) -> None:
        (job,) = _resolve(("* * * * *", _noop))
        with pytest.raises(AttributeError):
            job.schedule = "0 0 * * *"  # type: ignore[misc]

    @pytest.mark.parametrize("flag", ["0", "false", 1, None])
    def test_all_proc_must_be_bool(self, flag: Any) -> None:
        with pytest.raises(ConfigurationError, match="must be a bool"):
            _resolve({"sched1": {"crontab": "* * * * *", "code": _noop, "all_proc": flag}})

    @pytest.mark.parametrize("flag", [True, False])
    def test_all_proc_bools_accepted(self, flag: bool) -> None:
        (job,) = _resolve({"sched1": {"crontab": "* * * * *", "code": _noop, "all_proc": flag}})
        assert job.all_proc is flag


class TestIdentifierLength:
    def test_identifier_fitting_a_file_name_is_accepted(self) -> None:
        (job,) = _resolve({"a" * 200: {"crontab": "* * * * *", "code": _noop}})
        assert len(job.identifier) == 200

    @pytest.mark.parametrize("identifier", ["a" * 300, "é" * 60])
    def test_identifier_too_long_for_claim_file(self, identifier: str) -> None:
        with pytest.raises(ConfigurationError, match="too long"):
            _resolve({identifier: {"crontab": "* * * * *", "code": _noop}})

    def test_default_identifier_checked_too(self) -> None:
        with pytest.raises(ConfigurationError, match="too long"):
            _resolve(("* * * * *", _noop), default="x" * 300)

    def test_pinned_identifier_checked_too(self) -> None:
        entry = {"crontab": "* * * * *", "code": _noop, "__test_key": "k" * 300}
        with pytest.raises(ConfigurationError, match="too long"):
            _resolve({"short": entry})

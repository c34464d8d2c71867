"""Tests for the ``python -m cronherd`` entry point."""

from __future__ import annotations

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import time_machine

from cronherd.__main__ import _option, _positionals, _resolve_target, main
from cronherd.claims import ClaimDirectory, discard, release, try_acquire
from cronherd.config import MODE_ENV
from cronherd.errors import CronherdError


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.delenv(MODE_ENV, raising=False)
    path = tmp_path / "cronherd.json"
    path.write_text(json.dumps({"mode": "cli", "claim_root": str(tmp_path / "claims")}))
    return path


def _run(*args: str) -> None:
    with patch.object(sys, "argv", ["cronherd", *args]):
        main()


class TestArgs:
    def test_option_value(self) -> None:
        assert _option(["claims", "-c", "x.json"], "--config", "-c") == "x.json"

    def test_option_missing_value(self) -> None:
        assert _option(["claims", "-c"], "--config", "-c") is None

    def test_positionals_skip_option_values(self) -> None:
        args = ["next", "-n", "3", "*/5", "--utc", "*", "--config", "c.json", "*", "*", "*"]
        assert _positionals(args) == ["next", "*/5", "*", "*", "*", "*"]


class TestResolveTarget:
    def test_module_attribute(self) -> None:
        assert _resolve_target("cronherd.config:MODE_ENV") == MODE_ENV

    def test_missing_colon(self) -> None:
        with pytest.raises(CronherdError, match="module:attribute"):
            _resolve_target("cronherd.config")

    def test_missing_attribute(self) -> None:
        with pytest.raises(CronherdError, match="no attribute"):
            _resolve_target("cronherd.config:NOPE")


class TestCommands:
    def test_help_by_default(self, capsys: pytest.CaptureFixture[str]) -> None:
        _run()
        assert "Commands" in capsys.readouterr().out

    def test_unknown_command_shows_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        _run("frobnicate")
        assert "cronherd next" in capsys.readouterr().out

    @time_machine.travel(datetime(2026, 1, 15, 9, 3, tzinfo=UTC), tick=False)
    def test_next_previews_due_times(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        _run("next", "*/5", "9-17", "*", "*", "*", "--utc", "-n", "3", "-c", str(config_file))
        out = capsys.readouterr().out
        assert "2026-01-15 09:05" in out
        assert "2026-01-15 09:15" in out
        assert "09:20" not in out

    def test_next_without_expression(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run("next")
        assert exc_info.value.code == 2

    @pytest.mark.parametrize("count", ["abc", "0", "-2"])
    def test_next_rejects_bad_count(self, count: str, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run("next", "*", "*", "*", "*", "*", "-n", count)
        assert exc_info.value.code == 2
        assert "positive integer" in capsys.readouterr().out

    def test_next_with_bad_expression(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run("next", "61", "*", "*", "*", "*")
        assert exc_info.value.code == 1
        assert "Error:" in capsys.readouterr().out

    def test_claims_empty(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run("claims", "-c", str(config_file))
        assert "No claim files" in capsys.readouterr().out

    def test_claims_lists_files(
        self, config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        claims = ClaimDirectory(tmp_path / "claims" / "cli")
        held = claims.open_claim("reports", 200)
        assert try_acquire(held)
        discard(claims.open_claim("backup", 100))
        try:
            _run("claims", "-c", str(config_file))
        finally:
            release(held)
        out = capsys.readouterr().out
        assert "reports" in out
        assert "backup" in out
        assert "held" in out
        assert "free" in out

    def test_reap(
        self, config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        claims = ClaimDirectory(tmp_path / "claims" / "cli")
        discard(claims.open_claim("reports", 100))

        _run("reap", "-c", str(config_file))

        assert "Reaped 1 orphaned" in capsys.readouterr().out
        assert claims.scan() == []

    def test_bad_config_exits_with_error(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{")
        with pytest.raises(SystemExit) as exc_info:
            _run("claims", "-c", str(path))
        assert exc_info.value.code == 1
        assert "Error:" in capsys.readouterr().out

    def test_run_requires_target(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            _run("run")
        assert exc_info.value.code == 2

    @time_machine.travel(datetime.fromtimestamp(1010, UTC), tick=False)
    def test_claims_inside_window_show_pending(
        self, config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        claims = ClaimDirectory(tmp_path / "claims" / "cli")
        discard(claims.open_claim("reports", 1000))

        _run("claims", "-c", str(config_file))

        out = capsys.readouterr().out
        assert "pending" in out
        assert "free" not in out

    def test_run_logs_to_configured_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "cronherd.json"
        log_dir = tmp_path / "logs"
        path.write_text(json.dumps({"log_dir": str(log_dir), "log_level": "WARNING"}))

        with (
            patch("cronherd.__main__.setup_logging") as setup,
            patch("cronherd.__main__.CronScheduler") as scheduler_cls,
        ):
            scheduler_cls.return_value.serve = AsyncMock()
            _run("run", "cronherd.config:MODE_ENV", "-c", str(path))

        setup.assert_called_once_with(level="WARNING", verbose=False, log_dir=log_dir)
        scheduler_cls.return_value.register.assert_called_once_with(MODE_ENV)
        scheduler_cls.return_value.serve.assert_awaited_once()

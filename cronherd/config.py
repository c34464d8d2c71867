"""Scheduler configuration and timezone resolution."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError

from cronherd.claims import CLAIM_WINDOW
from cronherd.errors import ConfigurationError

logger = logging.getLogger(__name__)

CLAIM_NAMESPACE = "cronherd_claims"
MODE_ENV = "CRONHERD_MODE"


class SchedulerConfig(BaseModel):
    """Top-level scheduler settings, usually loaded from a JSON file."""

    mode: str = "development"
    app_name: str = "cronherd"
    claim_root: str = ""
    claim_window_seconds: float = Field(default=CLAIM_WINDOW, gt=0)
    local_timezone: str = ""
    reap_orphans_on_start: bool = True
    orphan_grace_seconds: int = Field(default=3600, ge=0)
    halt_on_claim_error: bool = True
    log_level: str = "INFO"
    log_dir: str = ""

    @property
    def claim_dir(self) -> Path:
        """Directory shared by every cooperating process of this deployment mode.

        ``claim_root`` replaces the temp-dir namespace but is still scoped by mode
        so staging and production never share claim files.
        """
        if self.claim_root:
            base = Path(self.claim_root).expanduser()
        else:
            base = Path(tempfile.gettempdir()) / CLAIM_NAMESPACE
        return base / self.mode

    @property
    def log_path(self) -> Path | None:
        """Directory for the rotating log file, or None for console-only logging."""
        return Path(self.log_dir).expanduser() if self.log_dir else None


def load_config(config_path: Path | None = None) -> SchedulerConfig:
    """Load settings from *config_path*, then apply environment overrides.

    A missing file yields the defaults.  An unreadable or invalid file raises
    ``ConfigurationError``: a scheduler started with the wrong claim directory
    would silently stop excluding its peers.
    """
    data: dict[str, object] = {}
    if config_path is not None and config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            msg = f"Cannot read scheduler config {config_path}: {exc}"
            raise ConfigurationError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Scheduler config {config_path} must contain a JSON object"
            raise ConfigurationError(msg)

    mode = os.environ.get(MODE_ENV, "").strip()
    if mode:
        data["mode"] = mode

    try:
        config = SchedulerConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid scheduler config: {exc}"
        raise ConfigurationError(msg) from exc
    logger.debug("Config loaded mode=%s claim_dir=%s", config.mode, config.claim_dir)
    return config


def _host_zone_names() -> Iterator[str]:
    """Zone names the host advertises: ``$TZ`` first, then the ``/etc/localtime`` link."""
    tz_env = os.environ.get("TZ", "").strip().lstrip(":")
    if tz_env:
        yield tz_env
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        # /usr/share/zoneinfo/Europe/Berlin -> Europe/Berlin
        _, marker, name = str(localtime.resolve()).partition("/zoneinfo/")
        if marker and name:
            yield name


def _load_zone(name: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, KeyError, ValueError):
        return None


def resolve_timezone(configured: str = "") -> ZoneInfo:
    """Zone used for ``base=local`` schedules.

    *configured* wins when it names a real zone; otherwise the host's zone is
    used, and UTC when the host does not advertise one.
    """
    name = configured.strip()
    if name:
        zone = _load_zone(name)
        if zone is not None:
            return zone
        logger.warning("Unknown local_timezone '%s', using the host zone", name)
    for candidate in _host_zone_names():
        zone = _load_zone(candidate)
        if zone is not None:
            return zone
    return ZoneInfo("UTC")

"""Logging for processes that embed the scheduler.

``cronherd run`` calls ``setup_logging()`` from the loaded config; hosts that
embed ``CronScheduler`` directly may call it themselves or keep their own
setup.  Lines carry the process id: with preforked workers sharing one
terminal or one log directory, the pid tells who won each claim.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path

from cronherd.log_context import ContextFilter

LOG_FILE = "cronherd.log"
MAX_BYTES = 2 * 1024 * 1024
BACKUP_COUNT = 3

CONSOLE_FMT = "%(asctime)s %(levelname)s %(process)d %(name)s: %(ctx)s%(message)s"
FILE_FMT = "%(asctime)s [%(levelname)s] pid=%(process)d %(name)s:%(lineno)d: %(ctx)s%(message)s"

logger = logging.getLogger(__name__)

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
_RESET = "\x1b[0m"

# Drains the file queue on a background thread; replaced on every setup call.
_file_listener: QueueListener | None = None
_shutdown_hooked = False


class _ColorFormatter(logging.Formatter):
    """Pads the level name and, on a terminal, colors it."""

    def __init__(self, fmt: str, datefmt: str | None = None, use_color: bool = True) -> None:
        super().__init__(fmt, datefmt)
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        plain = record.levelname
        padded = f"{plain:<8}"
        color = _LEVEL_COLORS.get(record.levelno) if self._use_color else None
        record.levelname = f"{color}{padded}{_RESET}" if color else padded
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def shutdown_logging() -> None:
    """Flush and stop the file writer thread, if one is running."""
    global _file_listener  # noqa: PLW0603
    listener, _file_listener = _file_listener, None
    if listener is not None:
        listener.stop()


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _console_handler(level: int) -> logging.Handler | None:
    stream = sys.stderr
    if stream is None:
        return None
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    tty = hasattr(stream, "isatty") and stream.isatty()
    handler.setFormatter(_ColorFormatter(CONSOLE_FMT, datefmt="%H:%M:%S", use_color=tty))
    return handler


def _file_handler(log_dir: Path) -> logging.Handler:
    """Queue in front of a rotating file, so disk latency never blocks the event loop."""
    global _file_listener, _shutdown_hooked  # noqa: PLW0603
    log_dir.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(
        log_dir / LOG_FILE, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8"
    )
    rotating.setLevel(logging.DEBUG)
    rotating.setFormatter(logging.Formatter(FILE_FMT, datefmt="%Y-%m-%d %H:%M:%S"))

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    _file_listener = QueueListener(records, rotating, respect_handler_level=True)
    _file_listener.start()
    if not _shutdown_hooked:
        atexit.register(shutdown_logging)
        _shutdown_hooked = True

    handler = QueueHandler(records)
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging(
    level: int | str = logging.INFO,
    verbose: bool = False,
    log_dir: Path | None = None,
) -> None:
    """Replace the root logger's handlers with cronherd's console (+ file) output.

    Args:
        level: Minimum level as an int or a name such as ``"warning"``.
            Unknown names fall back to INFO.
        verbose: Force DEBUG.
        log_dir: Where ``cronherd.log`` rotates.  None logs to the console only.
    """
    effective = logging.DEBUG if verbose else _coerce_level(level)
    shutdown_logging()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(effective)

    handlers = [_console_handler(effective)]
    if log_dir is not None:
        handlers.append(_file_handler(log_dir))
    ctx_filter = ContextFilter()
    for handler in handlers:
        if handler is not None:
            handler.addFilter(ctx_filter)
            root.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logger.info(
        "Logging initialized (level=%s, file=%s)",
        logging.getLevelName(effective),
        log_dir / LOG_FILE if log_dir is not None else "none",
    )

"""Entry point: python -m cronherd."""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cronherd.claims import ClaimDirectory
from cronherd.config import SchedulerConfig, load_config
from cronherd.errors import CronherdError
from cronherd.logging_config import setup_logging
from cronherd.schedule import TimeBase, iter_times, zone_for
from cronherd.scheduler import CronScheduler

logger = logging.getLogger(__name__)

_console = Console()

_DEFAULT_COUNT = 5

_COMMANDS = frozenset({"help", "next", "claims", "reap", "run"})


def _option(args: list[str], *names: str) -> str | None:
    """Return the value following the first of *names* in *args*."""
    for i, a in enumerate(args):
        if a in names and i + 1 < len(args):
            return args[i + 1]
    return None


def _positionals(args: list[str]) -> list[str]:
    """Non-flag arguments, skipping values consumed by ``--config``/``--count``."""
    result: list[str] = []
    skip = False
    for a in args:
        if skip:
            skip = False
            continue
        if a in {"--config", "-c", "--count", "-n"}:
            skip = True
            continue
        if a.startswith("-"):
            continue
        result.append(a)
    return result


def _load(args: list[str]) -> SchedulerConfig:
    raw = _option(args, "--config", "-c")
    return load_config(Path(raw).expanduser() if raw else None)


def _print_usage() -> None:
    _console.print()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold green", min_width=34)
    table.add_column()
    table.add_row("cronherd next <expr> [--utc] [-n N]", "Preview upcoming due times")
    table.add_row("cronherd claims [-c CONFIG]", "List claim files and whether they are held")
    table.add_row("cronherd reap [-c CONFIG]", "Delete orphaned claims now")
    table.add_row("cronherd run <module:attr> [-c CONFIG]", "Serve the jobs defined at module:attr")
    table.add_row("cronherd help", "Show this message")
    table.add_row("-v, --verbose", "Verbose logging output")
    _console.print(
        Panel(table, title="[bold]Commands[/bold]", border_style="blue", padding=(1, 0)),
    )
    _console.print()


def _cmd_next(args: list[str]) -> None:
    """Print the next due times of a cron expression."""
    positionals = _positionals(args)[1:]
    if not positionals:
        _console.print("[bold red]Usage:[/bold red] cronherd next '<min> <hour> <dom> <mon> <dow>'")
        raise SystemExit(2)
    expression = " ".join(positionals)
    base = TimeBase.UTC if "--utc" in args else TimeBase.LOCAL
    raw_count = _option(args, "--count", "-n")
    try:
        count = int(raw_count) if raw_count is not None else _DEFAULT_COUNT
    except ValueError:
        count = 0
    if count < 1:
        _console.print(
            f"[bold red]Usage:[/bold red] --count expects a positive integer, got '{raw_count}'"
        )
        raise SystemExit(2)
    config = _load(args)
    tz = zone_for(base, config.local_timezone)

    table = Table(title=f"{expression}  ({base}, {tz.key})", title_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Due (epoch)", justify="right")
    table.add_column("Wall clock", style="bold cyan")
    times = iter_times(expression, base, int(time.time()), local_timezone=config.local_timezone)
    for i, due in zip(range(1, count + 1), times, strict=False):
        wall = datetime.fromtimestamp(due, tz).strftime("%Y-%m-%d %H:%M %Z")
        table.add_row(str(i), str(due), wall)
    _console.print()
    _console.print(table)
    _console.print()


def _cmd_claims(args: list[str]) -> None:
    """Show the claim directory contents."""
    config = _load(args)
    claims = ClaimDirectory(config.claim_dir)
    now = time.time()
    found = claims.scan(now=now, window=config.claim_window_seconds)
    _console.print()
    if not found:
        _console.print(
            Panel(
                f"No claim files in [bold]{claims.root}[/bold]",
                title="[bold]Claims[/bold]",
                border_style="green",
                padding=(1, 2),
            ),
        )
        _console.print()
        return
    table = Table(title=str(claims.root), title_style="bold")
    table.add_column("Due", justify="right")
    table.add_column("Job", style="bold")
    table.add_column("State")
    table.add_column("Age", justify="right", style="dim")
    for c in found:
        if c.pending:
            state = "[blue]pending[/blue]"
        elif c.held:
            state = "[green]held[/green]"
        else:
            state = "[yellow]free[/yellow]"
        table.add_row(str(c.due), c.identifier, state, f"{now - c.due:+.0f}s")
    _console.print(table)
    _console.print()


def _cmd_reap(args: list[str]) -> None:
    config = _load(args)
    claims = ClaimDirectory(config.claim_dir)
    reaped = claims.reap_orphans(
        now=time.time(),
        grace=config.orphan_grace_seconds,
        window=config.claim_window_seconds,
    )
    _console.print(f"Reaped [bold]{reaped}[/bold] orphaned claim(s) from {claims.root}")


def _resolve_target(target: str) -> object:
    """Import ``package.module:attribute`` and return the attribute."""
    module_name, sep, attr = target.partition(":")
    if not sep or not attr:
        msg = f"Expected module:attribute, got '{target}'"
        raise CronherdError(msg)
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        msg = f"Module '{module_name}' has no attribute '{attr}'"
        raise CronherdError(msg) from None


def _cmd_run(args: list[str], verbose: bool) -> None:
    """Serve jobs until SIGINT/SIGTERM or a claim failure."""
    positionals = _positionals(args)[1:]
    if not positionals:
        _console.print("[bold red]Usage:[/bold red] cronherd run <module:attr>")
        raise SystemExit(2)
    config = _load(args)
    setup_logging(level=config.log_level, verbose=verbose, log_dir=config.log_path)
    payload = _resolve_target(positionals[0])

    scheduler = CronScheduler(config)
    scheduler.register(payload)

    loop = asyncio.new_event_loop()
    task = loop.create_task(scheduler.serve())
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, task.cancel)
    try:
        loop.run_until_complete(task)
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.info("Scheduler interrupted")
    finally:
        loop.close()


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]
    verbose = "--verbose" in args or "-v" in args
    positionals = _positionals(args)
    command = positionals[0] if positionals and positionals[0] in _COMMANDS else "help"
    if "--help" in args or "-h" in args:
        command = "help"

    dispatch: dict[str, object] = {
        "help": _print_usage,
        "next": lambda: _cmd_next(args),
        "claims": lambda: _cmd_claims(args),
        "reap": lambda: _cmd_reap(args),
        "run": lambda: _cmd_run(args, verbose),
    }
    try:
        dispatch[command]()  # type: ignore[operator]
    except CronherdError as exc:
        _console.print(f"[bold red]Error:[/bold red] {exc}")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()

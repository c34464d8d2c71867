"""Cross-process claims: one advisory-locked file per (job, due timestamp).

Every cooperating process on a host derives the same path for the same
occurrence.  Whoever takes the non-blocking exclusive ``flock`` first runs the
job; everyone else closes their handle and moves on.  Only the lock holder
deletes the file, and only after unlocking it.

``flock`` locks belong to the open file description, so two handles opened in
the same process contend exactly like two processes do.  The kernel drops the
lock when its owner dies, which is why a stale file left by a crashed worker
never blocks the next occurrence.
"""

from __future__ import annotations

import fcntl
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO
from urllib.parse import quote, unquote

from cronherd.errors import ClaimError

logger = logging.getLogger(__name__)

CLAIM_SUFFIX = ".lock"
# Seconds a winner keeps its claim locked after firing.
CLAIM_WINDOW = 20.0


@dataclass(slots=True)
class Claim:
    """An open handle on one occurrence's claim file."""

    identifier: str
    due: int
    path: Path
    handle: IO[str]
    locked: bool = field(default=False)

    @property
    def closed(self) -> bool:
        return self.handle.closed


@dataclass(frozen=True, slots=True)
class ClaimFile:
    """A claim file found on disk by ``ClaimDirectory.scan``.

    ``pending`` claims are not yet due or still inside their claim window.  They
    are never lock-tested, so ``held`` is always False for them.
    """

    path: Path
    due: int
    identifier: str
    held: bool
    pending: bool = False


def claim_name(identifier: str, due: int) -> str:
    """Deterministic file name for one occurrence: ``<due>.<quoted identifier>.lock``."""
    return f"{due}.{quote(identifier, safe='')}{CLAIM_SUFFIX}"


def parse_claim_name(name: str) -> tuple[int, str] | None:
    """Inverse of ``claim_name``; None for files that are not claims."""
    if not name.endswith(CLAIM_SUFFIX):
        return None
    stem = name[: -len(CLAIM_SUFFIX)]
    due_part, sep, ident_part = stem.partition(".")
    if not sep or not ident_part or not due_part.isdigit():
        return None
    return int(due_part), unquote(ident_part)


def try_acquire(claim: Claim) -> bool:
    """Attempt a non-blocking exclusive lock.  Returns False if another handle holds it."""
    try:
        fcntl.flock(claim.handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    except OSError as exc:
        msg = f"Cannot lock claim {claim.path}: {exc}"
        raise ClaimError(msg) from exc
    claim.locked = True
    return True


def release(claim: Claim) -> None:
    """Unlock, close and delete the claim file, in that order.

    Each step failing raises ``ClaimError``: it means the claim directory was
    tampered with and future occurrences can no longer be trusted to run once.
    """
    try:
        fcntl.flock(claim.handle.fileno(), fcntl.LOCK_UN)
    except (OSError, ValueError) as exc:
        msg = f"Cannot unlock claim {claim.path}: {exc}"
        raise ClaimError(msg) from exc
    claim.locked = False
    try:
        claim.handle.close()
    except OSError as exc:
        msg = f"Cannot close unlocked claim {claim.path}: {exc}"
        raise ClaimError(msg) from exc
    try:
        claim.path.unlink()
    except OSError as exc:
        msg = f"Cannot unlink unlocked claim {claim.path}: {exc}"
        raise ClaimError(msg) from exc
    logger.debug("Claim released: %s", claim.path.name)


def discard(claim: Claim) -> None:
    """Close a handle that lost the race.  The winner's lock and file are left alone."""
    try:
        claim.handle.close()
    except OSError as exc:
        msg = f"Cannot close claim {claim.path}: {exc}"
        raise ClaimError(msg) from exc


class ClaimDirectory:
    """The shared directory holding claim files for one deployment mode.

    Created once per scheduler and passed to every job driver.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, identifier: str, due: int) -> Path:
        return self._root / claim_name(identifier, due)

    def open_claim(self, identifier: str, due: int) -> Claim:
        """Create the directory tree if needed and open the claim file for append.

        Raises ``ClaimError`` on any filesystem failure.  There is no degraded
        mode: running without a claim could execute the job twice.
        """
        path = self.path_for(identifier, due)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            handle = path.open("a", encoding="utf-8")
        except OSError as exc:
            msg = f"Cannot open claim file {path}: {exc}"
            raise ClaimError(msg) from exc
        return Claim(identifier=identifier, due=due, path=path, handle=handle)

    def scan(self, *, now: float | None = None, window: float = CLAIM_WINDOW) -> list[ClaimFile]:
        """List claim files sorted by due time.

        Testing a claim takes its lock for an instant, which would make a worker
        waking at that moment lose its own occurrence.  Claims due at or after
        ``now - window`` are therefore reported as pending and left untouched;
        only older ones are tested for a live holder.
        """
        if not self._root.is_dir():
            return []
        horizon = (time.time() if now is None else now) - window
        found: list[ClaimFile] = []
        for entry in self._root.iterdir():
            parsed = parse_claim_name(entry.name)
            if parsed is None or not entry.is_file():
                continue
            due, identifier = parsed
            if due >= horizon:
                found.append(
                    ClaimFile(path=entry, due=due, identifier=identifier, held=False, pending=True)
                )
                continue
            found.append(
                ClaimFile(path=entry, due=due, identifier=identifier, held=_is_held(entry))
            )
        found.sort(key=lambda c: (c.due, c.identifier))
        return found

    def reap_orphans(self, *, now: float, grace: float, window: float = CLAIM_WINDOW) -> int:
        """Delete claims due before ``now - max(grace, window)`` that no live process holds.

        The reaper takes the lock itself before deleting, so it follows the
        same holder-deletes rule as a normal release.  Claims still inside their
        window are never touched, whatever the grace.  Returns the number of
        files removed.  Best effort: files that vanish or cannot be opened
        are skipped, and several workers may reap the same directory at once.
        """
        if not self._root.is_dir():
            return 0
        cutoff = now - max(grace, window)
        reaped = 0
        for entry in self._root.iterdir():
            parsed = parse_claim_name(entry.name)
            if parsed is None or parsed[0] >= cutoff:
                continue
            due, identifier = parsed
            try:
                handle = entry.open(encoding="utf-8")
            except OSError:
                logger.debug("Orphan candidate vanished: %s", entry.name)
                continue
            claim = Claim(identifier=identifier, due=due, path=entry, handle=handle)
            if not try_acquire(claim):
                discard(claim)
                continue
            with handle:
                # A peer reaping concurrently may already have removed it.
                entry.unlink(missing_ok=True)
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            reaped += 1
        if reaped:
            logger.info("Reaped %d orphaned claim(s) from %s", reaped, self._root)
        return reaped


def _is_held(path: Path) -> bool:
    """True if some open handle holds the exclusive lock on *path*."""
    try:
        with path.open(encoding="utf-8") as checker:
            try:
                fcntl.flock(checker.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(checker.fileno(), fcntl.LOCK_UN)
    except FileNotFoundError:
        return False
    return False

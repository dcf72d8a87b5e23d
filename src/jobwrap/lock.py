"""Single-instance lock with stale-owner reclamation.

Job exclusion is expressed by the lock file existing and naming a live
process. The advisory lock on the file handle is only held while an instance
inspects, rewrites or deletes that file, never for the lifetime of the job.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from jobwrap.primitives import create_exclusive, lock, process_exists, try_lock, unlock

logger = logging.getLogger(__name__)

# Exclusive create plus one retry when the lock file is released between steps.
DEFAULT_MAX_ATTEMPTS = 2


@dataclass(slots=True, frozen=True)
class LockAcquisition:
    """Result of one acquisition attempt."""

    held: bool
    reclaimed: bool = False
    owner_pid: int | None = None
    reason: str = ""


class LockManager:
    """Enforces at most one running instance per lock file."""

    def __init__(
        self,
        lock_path: Path,
        *,
        own_pid: int | None = None,
        process_exists: Callable[[int], bool] = process_exists,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.lock_path = lock_path
        self.own_pid = own_pid if own_pid is not None else os.getpid()
        self._process_exists = process_exists
        self._max_attempts = max(1, max_attempts)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> LockAcquisition:
        """Try once to become the owner; never waits for a running holder."""

        for _ in range(self._max_attempts):
            try:
                create_exclusive(self.lock_path, _format_pid(self.own_pid))
            except FileExistsError:
                pass
            else:
                self._held = True
                logger.debug("Created lock %s for pid %d", self.lock_path, self.own_pid)
                return LockAcquisition(held=True, owner_pid=self.own_pid)

            try:
                outcome = self._inspect_existing()
            except FileNotFoundError:
                outcome = None
            if outcome is not None:
                return outcome
            logger.debug("Lock %s was released while inspecting, retrying", self.lock_path)

        return LockAcquisition(held=False, reason="lock file changed during acquisition")

    def _inspect_existing(self) -> LockAcquisition | None:
        with self.lock_path.open("r+", encoding="utf-8", errors="replace") as handle:
            if not try_lock(handle):
                logger.debug("Lock %s is being inspected by another instance", self.lock_path)
                return LockAcquisition(held=False, reason="another instance is checking the lock")
            try:
                if not _is_current_file(handle, self.lock_path):
                    return None
                handle.seek(0)
                owner_pid = _parse_pid(handle.read())
                if owner_pid is not None and self._process_exists(owner_pid):
                    logger.debug("Lock %s held by live pid %d", self.lock_path, owner_pid)
                    return LockAcquisition(
                        held=False,
                        owner_pid=owner_pid,
                        reason=f"running as pid {owner_pid}",
                    )
                logger.warning(
                    "Reclaiming stale lock %s (owner pid %s no longer exists)",
                    self.lock_path,
                    owner_pid,
                )
                _rewrite(handle, self.own_pid)
                self._held = True
                return LockAcquisition(held=True, reclaimed=True, owner_pid=self.own_pid)
            finally:
                unlock(handle)

    def update_owner(self, pid: int) -> None:
        """Record ``pid`` (the spawned child) as the process a liveness probe should target."""

        if not self._held:
            raise RuntimeError("Cannot update owner of a lock that is not held.")
        with self.lock_path.open("r+", encoding="utf-8", errors="replace") as handle:
            lock(handle)
            try:
                _rewrite(handle, pid)
            finally:
                unlock(handle)
        logger.debug("Lock %s now names child pid %d", self.lock_path, pid)

    def release(self) -> None:
        """Delete the lock file if this instance holds it."""

        if not self._held:
            return
        self._held = False
        try:
            handle = self.lock_path.open("r+", encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.warning("Lock %s disappeared before release", self.lock_path)
            return
        with handle:
            lock(handle)
            if os.name == "nt":
                unlock(handle)
                handle.close()
                self.lock_path.unlink(missing_ok=True)
            else:
                try:
                    self.lock_path.unlink(missing_ok=True)
                finally:
                    unlock(handle)
        logger.debug("Released lock %s", self.lock_path)


def _format_pid(pid: int) -> str:
    return f"{pid}\n"


def _parse_pid(raw: str) -> int | None:
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _rewrite(handle: IO[str], pid: int) -> None:
    handle.seek(0)
    handle.truncate()
    handle.write(_format_pid(pid))
    handle.flush()
    os.fsync(handle.fileno())


def _is_current_file(handle: IO[str], path: Path) -> bool:
    """True if ``handle`` still refers to the file at ``path``."""

    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    opened = os.fstat(handle.fileno())
    return (opened.st_dev, opened.st_ino) == (on_disk.st_dev, on_disk.st_ino)

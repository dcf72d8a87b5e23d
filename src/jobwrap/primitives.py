"""Platform capabilities used by the lock protocol and the state store.

Two distinct primitives guard two distinct races: ``create_exclusive`` decides
who creates a lock file, while the advisory ``try_lock``/``lock`` calls on an
open handle serialize the instances that inspect or rewrite an existing one.
"""

from __future__ import annotations

import errno
import logging
import os
import tempfile
from pathlib import Path
from typing import IO

import psutil

logger = logging.getLogger(__name__)

_NO_HARDLINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.ENOSYS}


def create_exclusive(path: Path, content: str) -> None:
    """Atomically create ``path`` holding ``content``; raise FileExistsError if present.

    The content is written to a temp file first and hard-linked into place, so
    the target never becomes visible empty.
    """

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        try:
            os.link(tmp_path, path)
        except FileExistsError:
            raise
        except OSError as error:
            if error.errno not in _NO_HARDLINK_ERRNOS:
                raise
            logger.debug("Hard links unsupported in %s, using O_EXCL create", path.parent)
            _create_exclusive_direct(path, content)
    finally:
        tmp_path.unlink(missing_ok=True)


def _create_exclusive_direct(path: Path, content: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as handle:
        handle.write(content)


if os.name == "nt":
    import msvcrt

    def try_lock(handle: IO) -> bool:
        """Take a non-blocking exclusive advisory lock; False if someone else holds it."""
        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def lock(handle: IO) -> None:
        """Take a blocking exclusive advisory lock."""
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)

    def unlock(handle: IO) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def try_lock(handle: IO) -> bool:
        """Take a non-blocking exclusive advisory lock; False if someone else holds it."""
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def lock(handle: IO) -> None:
        """Take a blocking exclusive advisory lock."""
        fcntl.flock(handle, fcntl.LOCK_EX)

    def unlock(handle: IO) -> None:
        fcntl.flock(handle, fcntl.LOCK_UN)


def process_exists(pid: int) -> bool:
    """Report whether ``pid`` names a live process.

    Anything short of a definite "no such process" counts as alive, so an
    unreadable process table never leads to reclaiming a held lock. A pid
    beyond the platform's range cannot name any process.
    """

    if pid <= 0:
        return False
    try:
        if not psutil.pid_exists(pid):
            return False
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, OverflowError):
        return False
    except (psutil.Error, OSError):
        logger.debug("Could not determine state of pid %s, assuming alive", pid, exc_info=True)
        return True

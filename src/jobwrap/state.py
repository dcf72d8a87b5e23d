"""Durable per-job state directory keyed by the command fingerprint."""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from jobwrap.errors import StateSetupError
from jobwrap.identity import fingerprint
from jobwrap.primitives import create_exclusive, lock, unlock
from jobwrap.suppression import SuppressionDecision

logger = logging.getLogger(__name__)

COMMAND_FILE_NAME = "command"
LOCK_FILE_NAME = "lock"
FAILURES_FILE_NAME = "failures"


@dataclass(slots=True, frozen=True)
class JobState:
    """Resolved state paths for one job."""

    fingerprint: str
    directory: Path

    @property
    def command_path(self) -> Path:
        return self.directory / COMMAND_FILE_NAME

    @property
    def lock_path(self) -> Path:
        return self.directory / LOCK_FILE_NAME

    @property
    def failures_path(self) -> Path:
        return self.directory / FAILURES_FILE_NAME


class StateStore:
    """Creates and maintains ``<root_dir>/<fingerprint>/`` job directories."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def resolve(self, tokens: Sequence[str]) -> JobState:
        """Return the job's state directory, creating it and its command record if needed."""

        job_id = fingerprint(tokens)
        job = JobState(fingerprint=job_id, directory=self.root_dir / job_id)
        try:
            job.directory.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StateSetupError(
                f"Cannot create state directory {job.directory}: {error}",
            ) from error

        if not job.command_path.exists():
            try:
                create_exclusive(job.command_path, shlex.join(tokens) + "\n")
                logger.debug("Recorded command for job %s", job.fingerprint)
            except FileExistsError:
                pass
            except OSError as error:
                raise StateSetupError(
                    f"Cannot write command record {job.command_path}: {error}",
                ) from error

        logger.debug("Job %s state directory: %s", job.fingerprint, job.directory)
        return job

    def read_failure_count(self, job: JobState) -> int:
        """Return the persisted consecutive-failure count (0 when absent)."""

        try:
            raw = job.failures_path.read_text("utf-8", "replace")
        except FileNotFoundError:
            return 0
        except OSError as error:
            raise StateSetupError(
                f"Cannot read failure counter {job.failures_path}: {error}",
            ) from error
        return _parse_count(raw, job.failures_path)

    def update_failure_count(
        self,
        job: JobState,
        decide: Callable[[int], SuppressionDecision],
    ) -> SuppressionDecision:
        """Read-modify-write the failure counter under an exclusive advisory lock."""

        try:
            fd = os.open(job.failures_path, os.O_RDWR | os.O_CREAT, 0o644)
            with os.fdopen(fd, "r+", encoding="utf-8", errors="replace") as handle:
                lock(handle)
                try:
                    handle.seek(0)
                    previous = _parse_count(handle.read(), job.failures_path)
                    decision = decide(previous)
                    handle.seek(0)
                    handle.truncate()
                    handle.write(f"{decision.new_count}\n")
                    handle.flush()
                    os.fsync(handle.fileno())
                finally:
                    unlock(handle)
        except OSError as error:
            raise StateSetupError(
                f"Cannot update failure counter {job.failures_path}: {error}",
            ) from error

        logger.debug(
            "Job %s failure count %d -> %d",
            job.fingerprint,
            previous,
            decision.new_count,
        )
        return decision


def _parse_count(raw: str, path: Path) -> int:
    text = raw.strip()
    if not text:
        return 0
    try:
        value = int(text)
    except ValueError:
        logger.warning("Ignoring unreadable failure counter in %s: %r", path, text[:40])
        return 0
    return max(0, value)

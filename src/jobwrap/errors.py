"""Wrapper-level failures that abort before or instead of running the job.

A job that runs and exits non-zero is not an error here; it is routed through
the suppression policy instead.
"""

from __future__ import annotations

import rich_click as click

EXIT_SETUP_FAILED = 73
EXIT_LOCK_CONTENDED = 75
EXIT_SPAWN_NOT_FOUND = 127
EXIT_SPAWN_FAILED = 126


class WrapperError(click.ClickException):
    """Base infrastructure error; click prints it to stderr and exits with ``exit_code``."""

    exit_code = 1


class StateSetupError(WrapperError):
    """State directory or state files could not be created or written."""

    exit_code = EXIT_SETUP_FAILED


class LockContendedError(WrapperError):
    """Another instance of the same job holds, or is reclaiming, the lock."""

    exit_code = EXIT_LOCK_CONTENDED


class SpawnError(WrapperError):
    """The wrapped command could not be started."""

    def __init__(self, message: str, *, not_found: bool) -> None:
        super().__init__(message)
        self.not_found = not_found
        self.exit_code = EXIT_SPAWN_NOT_FOUND if not_found else EXIT_SPAWN_FAILED

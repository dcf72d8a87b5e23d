"""Controller tying identity, state, locking, execution and suppression together."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, replace
from pathlib import Path

from jobwrap.config import Settings
from jobwrap.errors import LockContendedError, StateSetupError
from jobwrap.lock import LockManager
from jobwrap.runner import ProcessRunner, RunResult
from jobwrap.state import JobState, StateStore
from jobwrap.suppression import SuppressionDecision, decide

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WrapCommand:
    """CLI input for one wrapped invocation."""

    tokens: tuple[str, ...]
    state_dir: Path | None = None
    suppress: int | None = None
    overlap: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class WrapOutcome:
    """What the wrapper should emit and exit with."""

    job: JobState
    run: RunResult
    decision: SuppressionDecision

    @property
    def output(self) -> bytes:
        return b"" if self.decision.suppress else self.run.output

    @property
    def exit_code(self) -> int:
        return self.decision.effective_exit_code


class WrapperController:
    """Runs one job invocation end to end."""

    def resolve_settings(self, command: WrapCommand) -> Settings:
        settings = Settings.from_env(state_dir=command.state_dir)
        wrapper = replace(
            settings.wrapper,
            suppress_threshold=(
                command.suppress
                if command.suppress is not None
                else settings.wrapper.suppress_threshold
            ),
            overlap=command.overlap or settings.wrapper.overlap,
            timeout_seconds=(
                command.timeout_seconds
                if command.timeout_seconds is not None
                else settings.wrapper.timeout_seconds
            ),
        )
        settings = replace(settings, wrapper=wrapper)
        settings.validate()
        return settings

    def wrap(self, command: WrapCommand, settings: Settings | None = None) -> WrapOutcome:
        if settings is None:
            settings = self.resolve_settings(command)
        store = StateStore(settings.state_dir)
        job = store.resolve(command.tokens)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Job %s starts with %d consecutive failures",
                job.fingerprint,
                store.read_failure_count(job),
            )

        lock_manager: LockManager | None = None
        if settings.wrapper.overlap:
            lock_manager = LockManager(job.lock_path)
            _acquire_or_raise(lock_manager, command.tokens)

        runner = ProcessRunner(timeout_seconds=settings.wrapper.timeout_seconds)
        try:
            result = runner.run(
                command.tokens,
                on_spawn=lock_manager.update_owner if lock_manager is not None else None,
            )
        finally:
            if lock_manager is not None:
                _release(lock_manager)

        threshold = settings.wrapper.suppress_threshold
        decision = store.update_failure_count(
            job,
            lambda previous: decide(result.exit_code, previous, threshold),
        )
        logger.debug(
            "Job %s exit=%d failures=%d threshold=%s suppress=%s",
            job.fingerprint,
            result.exit_code,
            decision.new_count,
            threshold,
            decision.suppress,
        )
        return WrapOutcome(job=job, run=result, decision=decision)


def _acquire_or_raise(lock_manager: LockManager, tokens: tuple[str, ...]) -> None:
    try:
        acquisition = lock_manager.acquire()
    except OSError as error:
        raise StateSetupError(f"Cannot use lock file {lock_manager.lock_path}: {error}") from error
    if not acquisition.held:
        raise LockContendedError(
            f"Job already running ({acquisition.reason}): {shlex.join(tokens)}",
        )
    if acquisition.reclaimed:
        logger.info("Took over stale lock %s", lock_manager.lock_path)


def _release(lock_manager: LockManager) -> None:
    try:
        lock_manager.release()
    except OSError as error:
        raise StateSetupError(
            f"Cannot release lock file {lock_manager.lock_path}: {error}",
        ) from error

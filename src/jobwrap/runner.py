"""Spawn the wrapped command and capture its merged output."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from jobwrap.errors import SpawnError

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
DEFAULT_GRACEFUL_SHUTDOWN_SECONDS = 5.0


@dataclass(slots=True)
class RunResult:
    """Execution outcome of the wrapped command."""

    output: bytes
    exit_code: int
    pid: int
    timed_out: bool = False


class ProcessRunner:
    """Runs one command to completion with stdout and stderr merged."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        graceful_shutdown_seconds: float = DEFAULT_GRACEFUL_SHUTDOWN_SECONDS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.graceful_shutdown_seconds = graceful_shutdown_seconds

    def run(
        self,
        tokens: Sequence[str],
        *,
        on_spawn: Callable[[int], None] | None = None,
    ) -> RunResult:
        """Run ``tokens`` and block until it exits (or the optional timeout fires)."""

        try:
            process = subprocess.Popen(  # noqa: S603
                list(tokens),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except FileNotFoundError as error:
            raise SpawnError(f"Command not found: {tokens[0]}", not_found=True) from error
        except OSError as error:
            raise SpawnError(f"Cannot start {tokens[0]}: {error}", not_found=False) from error

        with process:
            logger.debug("Started pid %d: %s", process.pid, tokens[0])
            if on_spawn is not None:
                try:
                    on_spawn(process.pid)
                except OSError:
                    logger.warning(
                        "Could not record child pid %d, lock keeps wrapper pid",
                        process.pid,
                        exc_info=True,
                    )

            try:
                output, _ = process.communicate(timeout=self.timeout_seconds)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "pid %d exceeded timeout of %ss, terminating",
                    process.pid,
                    self.timeout_seconds,
                )
                output = self._terminate(process)
                return RunResult(
                    output=output,
                    exit_code=TIMEOUT_EXIT_CODE,
                    pid=process.pid,
                    timed_out=True,
                )

        exit_code = _normalize_returncode(process.returncode)
        logger.debug("pid %d exited with %d", process.pid, exit_code)
        return RunResult(output=output or b"", exit_code=exit_code, pid=process.pid)

    def _terminate(self, process: subprocess.Popen[bytes]) -> bytes:
        try:
            process.terminate()
        except OSError:
            pass
        try:
            output, _ = process.communicate(timeout=self.graceful_shutdown_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            output, _ = process.communicate()
        return output or b""


def _normalize_returncode(returncode: int) -> int:
    """Map death-by-signal (negative return codes) to the shell's 128+N convention."""

    if returncode < 0:
        return 128 - returncode
    return returncode

from __future__ import annotations

import sys

import allure
import pytest

from jobwrap.errors import EXIT_SPAWN_NOT_FOUND, SpawnError
from jobwrap.runner import TIMEOUT_EXIT_CODE, ProcessRunner

pytestmark = [
    allure.epic("Job Execution"),
    allure.feature("Process Runner"),
]


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_run_merges_stdout_and_stderr() -> None:
    result = ProcessRunner().run(
        _python(
            "import sys; "
            "sys.stdout.write('out\\n'); sys.stdout.flush(); "
            "sys.stderr.write('err\\n'); sys.stderr.flush()",
        ),
    )

    assert result.exit_code == 0
    assert result.timed_out is False
    assert result.output.replace(b"\r\n", b"\n") == b"out\nerr\n"


def test_run_reports_child_exit_code() -> None:
    result = ProcessRunner().run(_python("import sys; sys.exit(3)"))
    assert result.exit_code == 3
    assert result.output == b""


def test_run_closes_stdin() -> None:
    result = ProcessRunner().run(_python("import sys; print(repr(sys.stdin.read()))"))
    assert result.output.strip() == b"''"


def test_run_passes_child_pid_to_on_spawn() -> None:
    seen: list[int] = []

    result = ProcessRunner().run(_python("pass"), on_spawn=seen.append)

    assert seen == [result.pid]


def test_run_keeps_going_when_on_spawn_cannot_record_pid() -> None:
    def _broken(_pid: int) -> None:
        raise OSError("disk full")

    result = ProcessRunner().run(_python("print('ok')"), on_spawn=_broken)

    assert result.exit_code == 0
    assert result.output.strip() == b"ok"


def test_run_raises_spawn_error_for_missing_command(tmp_path) -> None:
    missing = str(tmp_path / "no-such-command")

    with pytest.raises(SpawnError, match="Command not found") as excinfo:
        ProcessRunner().run([missing, "--flag"])

    assert excinfo.value.not_found is True
    assert excinfo.value.exit_code == EXIT_SPAWN_NOT_FOUND


def test_run_terminates_child_after_timeout() -> None:
    result = ProcessRunner(timeout_seconds=0.5, graceful_shutdown_seconds=2).run(
        _python("import time; print('started', flush=True); time.sleep(30)"),
    )

    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert b"started" in result.output


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_run_maps_signal_death_to_shell_convention() -> None:
    result = ProcessRunner().run(
        _python("import os, signal; os.kill(os.getpid(), signal.SIGTERM)"),
    )
    assert result.exit_code == 128 + 15

"""Shared test fixtures."""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path

import pytest

_ENV_VARS = (
    "JOBWRAP_STATE_DIR",
    "JOBWRAP_SUPPRESS",
    "JOBWRAP_OVERLAP",
    "JOBWRAP_TIMEOUT_SECONDS",
    "JOBWRAP_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's JOBWRAP_* settings out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handlers installed by CLI invocations so later tests log normally."""
    yield
    package_logger = logging.getLogger("jobwrap")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture()
def dead_pid() -> int:
    """Pid of a process that has already exited and been reaped."""
    process = subprocess.Popen([sys.executable, "-c", "pass"])  # noqa: S603
    process.wait()
    return process.pid

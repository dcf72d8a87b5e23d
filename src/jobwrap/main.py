"""CLI entrypoint for jobwrap."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import rich_click as click

from jobwrap import __version__
from jobwrap.controllers import WrapCommand, WrapperController
from jobwrap.errors import (
    EXIT_LOCK_CONTENDED,
    EXIT_SETUP_FAILED,
    EXIT_SPAWN_FAILED,
    EXIT_SPAWN_NOT_FOUND,
)
from jobwrap.runner import TIMEOUT_EXIT_CODE

click.rich_click.USE_MARKDOWN = True
WRAPPER_CONTROLLER = WrapperController()
LOG_FORMAT = "%(asctime)s jobwrap[%(process)d] %(levelname)s %(name)s: %(message)s"

MANUAL = f"""\
JOBWRAP(1)

NAME
    jobwrap - run a scheduled command with overlap locking and failure suppression

SYNOPSIS
    jobwrap [--overlap] [--suppress=N] [--timeout=SECONDS] [--state-dir=PATH]
            [--debug] [--] COMMAND [ARG...]

DESCRIPTION
    jobwrap runs COMMAND with stdin closed, captures stdout and stderr as one
    stream and decides afterwards whether to show it.

    Each distinct command line (the exact sequence of program and arguments)
    is a separate job with its own state directory under the state root,
    named by a SHA-256 fingerprint of the command line. The directory holds:

        command    the command line, for humans only
        lock       pid of the running instance (with --overlap)
        failures   number of consecutive failed runs

OPTIONS
    --overlap
        Allow at most one running instance of this job. If the lock file
        names a live process the invocation exits with status
        {EXIT_LOCK_CONTENDED} without running COMMAND. A lock left by a
        process that no longer exists is taken over.

    --suppress=N
        Hide failures until N consecutive runs have failed. A suppressed
        failure prints nothing and exits 0. Any success resets the count.

        WARNING: this deliberately masks real failures. Below the threshold
        a failing job looks exactly like a quiet successful one.

    --timeout=SECONDS
        Terminate COMMAND after SECONDS. A timed out run exits
        {TIMEOUT_EXIT_CODE} and counts as a failure. Without this option
        jobwrap waits for COMMAND indefinitely.

    --state-dir=PATH
        State root. Defaults to $JOBWRAP_STATE_DIR, then ~/.jobwrap.

    --debug
        Trace decisions to standard error.

ENVIRONMENT
    JOBWRAP_STATE_DIR, JOBWRAP_SUPPRESS, JOBWRAP_OVERLAP,
    JOBWRAP_TIMEOUT_SECONDS, JOBWRAP_DEBUG supply defaults for the options
    above. Command-line options win.

EXIT STATUS
    0       COMMAND succeeded, or its failure was suppressed
    N       COMMAND's own exit status for an unsuppressed failure
            (128+SIG when it was killed by a signal)
    {EXIT_SETUP_FAILED}      the state directory or its files could not be written
    {EXIT_LOCK_CONTENDED}      another instance of the job is running (--overlap)
    {EXIT_SPAWN_FAILED}     COMMAND could not be started
    {EXIT_SPAWN_NOT_FOUND}     COMMAND was not found
"""


def _show_manual(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(MANUAL)
    ctx.exit()


@click.command(context_settings={"allow_interspersed_args": False})
@click.version_option(version=__version__, prog_name="jobwrap")
@click.option(
    "--suppress",
    type=click.IntRange(min=1),
    default=None,
    help="Suppress output and exit status until this many consecutive failures.",
)
@click.option(
    "--overlap",
    is_flag=True,
    default=False,
    help="Refuse to start while another instance of the same command is running.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Terminate the command after this many seconds (default: wait forever).",
)
@click.option(
    "--state-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="State root directory. Defaults to JOBWRAP_STATE_DIR or ~/.jobwrap.",
)
@click.option("--debug", is_flag=True, default=False, help="Trace to standard error.")
@click.option(
    "--man",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=_show_manual,
    help="Show the full manual and exit.",
)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
def jobwrap(  # noqa: PLR0913
    suppress: int | None,
    overlap: bool,
    timeout_seconds: float | None,
    state_dir: Path | None,
    debug: bool,
    command: tuple[str, ...],
) -> None:
    """Run **COMMAND** with optional single-instance locking and failure suppression.

    Options must come before COMMAND; everything after it is passed through.
    """

    wrap_command = WrapCommand(
        tokens=command,
        state_dir=state_dir,
        suppress=suppress,
        overlap=overlap,
        timeout_seconds=timeout_seconds,
    )
    try:
        settings = WRAPPER_CONTROLLER.resolve_settings(wrap_command)
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _configure_logging(debug or settings.wrapper.debug)

    outcome = WRAPPER_CONTROLLER.wrap(wrap_command, settings)
    if outcome.output:
        stdout = click.get_binary_stream("stdout")
        stdout.write(outcome.output)
        stdout.flush()
    sys.exit(outcome.exit_code)


def _configure_logging(debug: bool) -> None:
    package_logger = logging.getLogger("jobwrap")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    package_logger.propagate = False


if __name__ == "__main__":  # pragma: no cover
    jobwrap()

"""Runtime configuration for the command wrapper."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_STATE_DIR_NAME = ".jobwrap"


@dataclass(slots=True)
class WrapperSettings:
    """Per-invocation wrapper behaviour defaults."""

    suppress_threshold: int | None = None
    overlap: bool = False
    timeout_seconds: float | None = None
    debug: bool = False


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    state_dir: Path = field(default_factory=lambda: Path.home() / DEFAULT_STATE_DIR_NAME)
    wrapper: WrapperSettings = field(default_factory=WrapperSettings)

    @classmethod
    def from_env(cls, state_dir: Path | None = None) -> Settings:
        """Load settings from environment, falling back to the user's home directory."""

        env_state_dir = os.getenv("JOBWRAP_STATE_DIR", "").strip()
        if state_dir is None:
            state_dir = (
                Path(env_state_dir).expanduser()
                if env_state_dir
                else Path.home() / DEFAULT_STATE_DIR_NAME
            )
        return cls(
            state_dir=state_dir,
            wrapper=WrapperSettings(
                suppress_threshold=_env_optional_int("JOBWRAP_SUPPRESS"),
                overlap=_env_bool("JOBWRAP_OVERLAP", default=False),
                timeout_seconds=_env_optional_float("JOBWRAP_TIMEOUT_SECONDS"),
                debug=_env_bool("JOBWRAP_DEBUG", default=False),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if wrapper settings are out of range."""

        threshold = self.wrapper.suppress_threshold
        if threshold is not None and threshold < 1:
            raise ValueError(f"Suppression threshold must be >= 1, got {threshold}.")
        timeout = self.wrapper.timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Timeout must be > 0 seconds, got {timeout}.")


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {raw!r}") from error


_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw not in _TRUE_VALUES | _FALSE_VALUES:
        raise ValueError(f"Invalid boolean value for {name}: {raw!r}")
    return raw in _TRUE_VALUES

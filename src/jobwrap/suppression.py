"""Consecutive-failure suppression policy."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class SuppressionDecision:
    """Outcome of one run as seen by the suppression policy."""

    exit_code: int
    previous_count: int
    new_count: int
    suppress: bool

    @property
    def effective_exit_code(self) -> int:
        """Exit code the wrapper itself should report."""

        return 0 if self.suppress else self.exit_code


def decide(exit_code: int, previous_count: int, threshold: int | None) -> SuppressionDecision:
    """Apply the policy: success resets, failure increments, and stays hidden below threshold.

    Suppressed failures exit 0 with no output. That deliberately masks real
    failures until ``threshold`` consecutive ones have accumulated.
    """

    if exit_code == 0:
        return SuppressionDecision(
            exit_code=0,
            previous_count=previous_count,
            new_count=0,
            suppress=False,
        )

    new_count = previous_count + 1
    return SuppressionDecision(
        exit_code=exit_code,
        previous_count=previous_count,
        new_count=new_count,
        suppress=threshold is not None and new_count < threshold,
    )

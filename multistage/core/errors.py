"""
Error types for pod generation.

Per-step failures are collected and returned as one ``AggregateError``
so callers see every broken step in a single pass.  Only precondition
failures (a collaborator that is missing entirely) are raised.
"""

from __future__ import annotations

from typing import Iterable


class PodGenerationError(Exception):
    """Base class for all pod generation errors."""


class PreconditionError(PodGenerationError):
    """A required collaborator is missing. No partial output is produced."""


class StepError(PodGenerationError):
    """A single step could not be turned into a pod."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        self.message = message
        super().__init__(f"step {step}: {message}")


class AggregateError(PodGenerationError):
    """Several independent failures reported together.

    The message is the single error's message when there is only one,
    otherwise ``[msg1, msg2, ...]``.
    """

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: list[BaseException] = list(errors)
        super().__init__(self._format())

    def _format(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

    def __len__(self) -> int:
        return len(self.errors)

    def __iter__(self):
        return iter(self.errors)


def aggregate(errors: list[BaseException]) -> AggregateError | None:
    """Wrap a list of errors, or return None if it is empty."""
    if not errors:
        return None
    return AggregateError(errors)

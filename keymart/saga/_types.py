"""
Saga types - core data structures.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from kungfu import LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Compensator
# ═══════════════════════════════════════════════════════════════════════════════

type Compensator[T] = Callable[[T], Awaitable[None]]
"""Receives the action's result and undoes it."""

# ═══════════════════════════════════════════════════════════════════════════════
# Saga AST
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """
    A single step: action + compensator.

    When the action succeeds its compensator is recorded. If a later step
    fails, recorded compensators run in reverse.
    """

    name: str
    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None

    def then[U](self, f: Callable[[T], Saga[U, E]]) -> Then[T, U, E]:
        """Chain the next step; ``f`` receives this step's value."""
        return Then(self, f)


@dataclass(frozen=True, slots=True)
class Then[T, U, E]:
    """Sequential composition (monadic bind). Chains nest to any depth."""

    inner: Saga[T, E]
    f: Callable[[T], Saga[U, E]]

    def then[V](self, g: Callable[[U], Saga[V, E]]) -> Then[U, V, E]:
        return Then(self, g)


type Saga[T, E] = SagaStep[T, E] | Then[object, T, E]


class CompensationFailed(Exception):
    """Raised by a compensator whose undo returned an error."""

    def __init__(self, error: object) -> None:
        super().__init__(str(error))
        self.error = error

# ═══════════════════════════════════════════════════════════════════════════════
# Compensation Policy
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CompensationRetry:
    """Retry a failing compensator before counting it as failed."""

    times: int = 1
    delay: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        if self.times < 1:
            raise ValueError("CompensationRetry.times must be >= 1")


# ═══════════════════════════════════════════════════════════════════════════════
# Result Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps_executed: int
    compensators_recorded: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """Failure with rollback status. ``failed_compensators`` names the steps left applied."""

    error: E
    step_failed: str
    compensators_run: int
    failed_compensators: tuple[str, ...]

    @property
    def rollback_complete(self) -> bool:
        return not self.failed_compensators


__all__ = (
    "Compensator",
    "CompensationFailed",
    "SagaStep",
    "Then",
    "Saga",
    "CompensationRetry",
    "SagaResult",
    "SagaError",
)

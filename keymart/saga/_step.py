"""
Saga step creation.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from combinators import lift as L
from kungfu import Error, LazyCoroResult, Result

from keymart.saga._types import CompensationFailed, Compensator, SagaStep


def step[T, E](
    name: str,
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    """
    Create a compensated step.

    Example:
        from keymart import saga as S

        debit = S.step(
            "debit",
            wallet.debit(user_id, amount, order_ref=order_id),
            compensate=S.compensator(
                lambda tx: wallet.credit(user_id, amount, refund_ref=f"reversal:{order_id}")
            ),
        )
    """
    return SagaStep(name=name, action=action, compensate=compensate)


def from_async[T, E](
    name: str,
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    """Step from a plain async callable; exceptions become ``on_error(e)``."""
    return SagaStep(
        name=name,
        action=L.catching_async(action, on_error=on_error),
        compensate=compensate,
    )


def compensator[T](undo: Callable[[T], Awaitable[Result[Any, Any]]]) -> Compensator[T]:
    """
    Adapt a Result-returning undo. An ``Error`` counts as a failed
    compensation and is retried per ``CompensationRetry``.
    """

    async def run(value: T) -> None:
        result = await undo(value)
        if isinstance(result, Error):
            raise CompensationFailed(result.error)

    return run


__all__ = ("step", "from_async", "compensator")

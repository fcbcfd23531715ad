"""
Saga execution with automatic rollback.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from kungfu import Error, Ok, Result

from keymart.log import get_logger
from keymart.saga._types import (
    CompensationRetry,
    Compensator,
    Saga,
    SagaError,
    SagaResult,
    SagaStep,
    Then,
)

log = get_logger("saga")


@dataclass(slots=True)
class _Journal:
    """Steps applied so far, in order."""

    recorded: list[tuple[str, Any, Compensator[Any]]] = field(default_factory=list)
    steps: int = 0
    failed_step: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Forward
# ═══════════════════════════════════════════════════════════════════════════════


async def _execute(expr: Saga[Any, Any], journal: _Journal) -> Result[Any, Any]:
    match expr:
        case SagaStep(name=name, action=action, compensate=compensate):
            journal.steps += 1
            result = await action
            match result:
                case Ok(value):
                    if compensate is not None:
                        journal.recorded.append((name, value, compensate))
                    return Ok(value)
                case Error(e):
                    journal.failed_step = name
                    return Error(e)
        case Then(inner=inner, f=f):
            match await _execute(inner, journal):
                case Ok(value):
                    return await _execute(f(value), journal)
                case Error(e):
                    return Error(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Rollback
# ═══════════════════════════════════════════════════════════════════════════════


async def _compensate_one(
    name: str,
    value: Any,
    comp: Compensator[Any],
    retry: CompensationRetry,
) -> bool:
    for attempt in range(1, retry.times + 1):
        try:
            await comp(value)
            return True
        except Exception as e:
            log.warning(
                "saga_compensator_failed",
                step=name,
                attempt=attempt,
                error=f"{type(e).__name__}: {e}",
            )
            if attempt < retry.times and retry.delay.total_seconds() > 0:
                await asyncio.sleep(retry.delay.total_seconds())
    return False


async def _rollback(journal: _Journal, retry: CompensationRetry) -> tuple[int, tuple[str, ...]]:
    """Run compensators in reverse. Returns (run, names that failed)."""
    run_count = 0
    failed: list[str] = []
    for name, value, comp in reversed(journal.recorded):
        if await _compensate_one(name, value, comp, retry):
            run_count += 1
        else:
            failed.append(name)
    return run_count, tuple(failed)


# ═══════════════════════════════════════════════════════════════════════════════
# run()
# ═══════════════════════════════════════════════════════════════════════════════


async def run[T, E](
    saga: Saga[T, E],
    *,
    retry: CompensationRetry = CompensationRetry(),
) -> Result[SagaResult[T], SagaError[E]]:
    """
    Execute a saga with automatic rollback on failure.

    Example:
        from keymart import saga as S

        pay = (
            S.step("gate", checkouts.mark_paid(cid), compensate=reopen)
            .then(lambda _: S.step("debit", wallet.debit(...), compensate=refund))
            .then(lambda tx: S.step("order", orders.insert(order), compensate=discard))
        )

        match await S.run(pay):
            case Ok(r): ...
            case Error(e): log.error(..., step=e.step_failed)
    """
    journal = _Journal()
    match await _execute(saga, journal):
        case Ok(value):
            return Ok(SagaResult(
                value=value,
                steps_executed=journal.steps,
                compensators_recorded=len(journal.recorded),
            ))
        case Error(error):
            comp_run, failed = await _rollback(journal, retry)
            if failed:
                log.error("saga_rollback_incomplete", step_failed=journal.failed_step, left_applied=failed)
            return Error(SagaError(
                error=error,
                step_failed=journal.failed_step,
                compensators_run=comp_run,
                failed_compensators=failed,
            ))


__all__ = ("run",)

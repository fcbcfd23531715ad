"""
Saga - multi-step writes with compensation.

    from keymart import saga as S

    saga = S.step("a", action, undo_a).then(lambda v: S.step("b", action_b(v), undo_b))
    result = await S.run(saga)
"""

from __future__ import annotations

from keymart.saga._types import (
    Compensator,
    CompensationFailed,
    SagaStep,
    Then,
    Saga,
    CompensationRetry,
    SagaResult,
    SagaError,
)
from keymart.saga._step import step, from_async, compensator
from keymart.saga._run import run

__all__ = (
    "Compensator",
    "CompensationFailed",
    "SagaStep",
    "Then",
    "Saga",
    "CompensationRetry",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "compensator",
    "run",
)

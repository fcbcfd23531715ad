"""
Error taxonomy - errors are values, not exceptions.

Every fallible operation returns ``Result[T, <one of these>]``. Callers
``match`` on the class:

    match await wallet.debit(user_id, amount, order_ref=order_id):
        case Ok(tx): ...
        case Error(InsufficientFunds(balance=b)): ...
        case Error(TransientStoreError()): ...
"""

from __future__ import annotations

from dataclasses import dataclass, field

from combinators import RetryPolicy, flow
from kungfu import LazyCoroResult

from keymart._types import Cents


# ═══════════════════════════════════════════════════════════════════════════════
# Caller errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ValidationError:
    """Bad input: malformed ids, invalid coupon, owner rules. Nothing applied."""

    message: str
    field: str | None = None
    code: str = "validation_error"


@dataclass(frozen=True, slots=True)
class NotFound:
    entity: str
    entity_id: str
    code: str = "not_found"

    @property
    def message(self) -> str:
        return f"{self.entity} {self.entity_id} not found"


# ═══════════════════════════════════════════════════════════════════════════════
# Resource errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class InsufficientFunds:
    user_id: str
    balance: Cents
    requested: Cents
    code: str = "insufficient_funds"

    @property
    def message(self) -> str:
        return f"wallet balance {self.balance} < {self.requested}"


@dataclass(frozen=True, slots=True)
class OutOfStock:
    product_id: str
    requested: int
    available: int
    code: str = "out_of_stock"

    @property
    def message(self) -> str:
        return f"product {self.product_id}: requested {self.requested}, available {self.available}"


# ═══════════════════════════════════════════════════════════════════════════════
# State errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SessionNotPayable:
    """Checkout is not ``pending`` (paid, expired or cancelled)."""

    checkout_id: str
    status: str
    code: str = "session_not_payable"

    @property
    def message(self) -> str:
        return f"checkout {self.checkout_id} is {self.status}"


@dataclass(frozen=True, slots=True)
class IdempotencyConflict:
    """
    Duplicate delivery or already-applied transition.

    Note: always treated as a no-op success at the boundary.
    """

    message: str
    existing_id: str | None = None
    code: str = "idempotency_conflict"


@dataclass(frozen=True, slots=True)
class ReconciliationMismatch:
    """Captured currency/amount disagrees with the checkout."""

    checkout_id: str
    expected_amount: Cents
    received_amount: Cents
    expected_currency: str
    received_currency: str
    code: str = "reconciliation_mismatch"

    @property
    def message(self) -> str:
        return (
            f"checkout {self.checkout_id}: expected {self.expected_amount} {self.expected_currency}, "
            f"received {self.received_amount} {self.received_currency}"
        )


@dataclass(frozen=True, slots=True)
class SignatureInvalid:
    message: str = "webhook signature verification failed"
    code: str = "signature_invalid"


# ═══════════════════════════════════════════════════════════════════════════════
# Infrastructure errors
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class TransientStoreError:
    """Datastore failure. Retryable; the failed operation applied nothing."""

    message: str
    cause: Exception | None = field(default=None, compare=False)
    code: str = "transient_store_error"


@dataclass(frozen=True, slots=True)
class GatewayError:
    """Outbound payment-gateway call failed."""

    message: str
    cause: Exception | None = field(default=None, compare=False)
    code: str = "gateway_error"


type FulfillmentError = (
    ValidationError
    | NotFound
    | InsufficientFunds
    | OutOfStock
    | SessionNotPayable
    | IdempotencyConflict
    | ReconciliationMismatch
    | SignatureInvalid
    | TransientStoreError
    | GatewayError
)


def store_error(e: Exception) -> TransientStoreError:
    """``on_error`` adapter for ``L.catching_async`` at store boundaries."""
    return TransientStoreError(message=f"{type(e).__name__}: {e}", cause=e)


def is_transient(error: object) -> bool:
    """Retry predicate for store calls."""
    return isinstance(error, TransientStoreError)


def retrying[T, E](interp: LazyCoroResult[T, E], times: int) -> LazyCoroResult[T, E]:
    """Re-run on ``TransientStoreError`` with jittered backoff; other errors pass through."""
    if times <= 1:
        return interp
    policy = RetryPolicy.exponential_jitter(times, initial=0.05, max_delay=1.0, retry_on=is_transient)
    return flow(interp).retry(policy=policy).compile()


__all__ = (
    "ValidationError",
    "NotFound",
    "InsufficientFunds",
    "OutOfStock",
    "SessionNotPayable",
    "IdempotencyConflict",
    "ReconciliationMismatch",
    "SignatureInvalid",
    "TransientStoreError",
    "GatewayError",
    "FulfillmentError",
    "store_error",
    "is_transient",
    "retrying",
)

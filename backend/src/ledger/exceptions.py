"""Error taxonomy for the order and credit ledger.

Business-rule failures derive from ``LedgerError`` (itself a ``ValueError``,
matching how services have always signalled rejected requests). Store faults
are wrapped in ``TransientStoreError`` so callers can tell "the rule said no"
apart from "the database did not answer".
"""
import asyncio
from functools import wraps
from typing import Any, Callable
from uuid import UUID

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = structlog.get_logger(__name__)


class LedgerError(ValueError):
    """Base class for business-rule failures."""

    code = "ledger_error"
    remediation: str | None = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidOrder(LedgerError):
    """Order creation data violates an invariant."""

    code = "invalid_order"
    remediation = "Provide a positive credit count, a non-negative amount and a supported payment method."


class OrderNotFound(LedgerError):
    """Referenced order does not exist."""

    code = "order_not_found"
    remediation = "Verify the order ID or order number is correct."

    def __init__(self, order_ref: UUID | str):
        super().__init__(f"Order {order_ref} not found")
        self.order_ref = order_ref


class PoolNotFound(LedgerError):
    """Referenced credit pool does not exist."""

    code = "pool_not_found"
    remediation = "Verify the credit pool ID is correct."

    def __init__(self, pool_id: UUID | str):
        super().__init__(f"Credit pool {pool_id} not found")
        self.pool_id = pool_id


class InvalidTransition(LedgerError):
    """Requested status change is not legal from the order's current status."""

    code = "invalid_state_transition"
    remediation = "Re-fetch the order to see its current status before retrying."

    def __init__(self, order_id: UUID, current: str, target: str):
        super().__init__(f"Order {order_id} cannot move from {current} to {target}")
        self.order_id = order_id
        self.current = current
        self.target = target


class PermissionDenied(LedgerError):
    """Actor lacks the capability required for the operation."""

    code = "insufficient_permissions"
    remediation = "Ask an administrator to grant the required role."

    def __init__(self, actor_id: str, action: str, required: list[str]):
        super().__init__(
            f"Actor {actor_id} is not allowed to {action}. Required: {', '.join(required)}"
        )
        self.actor_id = actor_id
        self.action = action
        self.required = required


class DuplicatePool(LedgerError):
    """A credit pool already exists for the order."""

    code = "duplicate_pool"
    remediation = "The order has already been converted to credits; no action is needed."

    def __init__(self, order_id: UUID):
        super().__init__(f"A credit pool already exists for order {order_id}")
        self.order_id = order_id


class NoCreditsAvailable(LedgerError):
    """User has no active pool with remaining credits."""

    code = "no_credits_available"
    remediation = "Purchase a plan and wait for it to be authorized before running a simulation."

    def __init__(self, user_id: str):
        super().__init__(f"No credits available for user {user_id}")
        self.user_id = user_id


class IdempotencyConflict(LedgerError):
    """Idempotency key already settled a different debit, or is being settled concurrently."""

    code = "idempotency_conflict"
    remediation = "Use a fresh idempotency key for each distinct consumption."

    def __init__(self, user_id: str, idempotency_key: str, reason: str):
        super().__init__(f"Idempotency key {idempotency_key} for user {user_id} {reason}")
        self.user_id = user_id
        self.idempotency_key = idempotency_key


class InconsistentLedger(LedgerError):
    """An invariant between orders, pools and receipts no longer holds."""

    code = "inconsistent_ledger"
    remediation = "Run ledger reconciliation and contact an operator."


class TransientStoreError(Exception):
    """The store failed to answer; the outcome of the operation is unknown."""

    def __init__(self, operation: str, original: BaseException):
        super().__init__(f"{operation} failed with a transient store error: {original}")
        self.operation = operation
        self.original = original


def is_transient(exc: BaseException) -> bool:
    """Return True if the exception represents a retry-able store fault."""
    if isinstance(exc, (OperationalError, InterfaceError, asyncio.TimeoutError, ConnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def translate_store_errors(func: Callable) -> Callable:
    """
    Decorator that re-raises transient store faults as TransientStoreError.

    Business errors and integrity violations pass through unchanged.
    """

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except TransientStoreError:
            raise
        except Exception as exc:
            if not is_transient(exc):
                raise
            logger.warning(
                "transient_store_error",
                operation=func.__qualname__,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise TransientStoreError(func.__qualname__, exc) from exc

    return wrapper

"""Legal order status transitions and who may perform them.

    pending_validation --cashier/admin--> validated --admin--> authorized
    pending_validation | validated --buyer/cashier/admin--> cancelled
    pending_validation | validated --admin/system--> expired

authorized, cancelled and expired are terminal.
"""
from dataclasses import dataclass

from ledger.auth.capabilities import Capability
from ledger.models.order import OrderStatus, ValidationType


@dataclass(frozen=True)
class TransitionRule:
    """Requirements and side effects of one transition."""

    required: tuple[Capability, ...]
    validation_type: ValidationType
    # The order's own buyer may perform it without a back-office capability
    allow_owner: bool = False


TERMINAL_STATUSES = frozenset({OrderStatus.AUTHORIZED, OrderStatus.CANCELLED, OrderStatus.EXPIRED})

_CANCEL = TransitionRule(
    required=(Capability.CASHIER, Capability.ADMIN),
    validation_type=ValidationType.CANCELLATION,
    allow_owner=True,
)
_EXPIRE = TransitionRule(required=(Capability.ADMIN,), validation_type=ValidationType.EXPIRATION)

TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], TransitionRule] = {
    (OrderStatus.PENDING_VALIDATION, OrderStatus.VALIDATED): TransitionRule(
        required=(Capability.CASHIER, Capability.ADMIN),
        validation_type=ValidationType.VALIDATION,
    ),
    (OrderStatus.VALIDATED, OrderStatus.AUTHORIZED): TransitionRule(
        required=(Capability.ADMIN,),
        validation_type=ValidationType.AUTHORIZATION,
    ),
    (OrderStatus.PENDING_VALIDATION, OrderStatus.CANCELLED): _CANCEL,
    (OrderStatus.VALIDATED, OrderStatus.CANCELLED): _CANCEL,
    (OrderStatus.PENDING_VALIDATION, OrderStatus.EXPIRED): _EXPIRE,
    (OrderStatus.VALIDATED, OrderStatus.EXPIRED): _EXPIRE,
}


def is_terminal(status: OrderStatus) -> bool:
    """Return True if no transition leaves the status."""
    return status in TERMINAL_STATUSES


def get_rule(current: OrderStatus, target: OrderStatus) -> TransitionRule | None:
    """Return the rule for a transition, or None if it is not legal."""
    return TRANSITIONS.get((current, target))


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True if ``target`` is a legal successor of ``current``."""
    return (current, target) in TRANSITIONS


def allowed_targets(current: OrderStatus) -> list[OrderStatus]:
    """Statuses reachable from ``current`` in one step."""
    return [target for (source, target) in TRANSITIONS if source == current]

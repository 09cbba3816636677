"""Pydantic schemas for request/response validation."""

from ledger.schemas.order import (
    Order,
    OrderCreate,
    OrderFilters,
    OrderList,
    OrderStats,
    OrderTransition,
    OrderValidationRecord,
)
from ledger.schemas.credit import (
    ConsumeRequest,
    CreditPool,
    CreditStatus,
    CreditUsage,
    DeactivatePoolRequest,
    PoolStatus,
)
from ledger.schemas.reconciliation import ReconciliationReport, RepairResult, UnbalancedPool
from ledger.schemas.error import ErrorDetail, ErrorResponse

__all__ = [
    "Order",
    "OrderCreate",
    "OrderFilters",
    "OrderList",
    "OrderStats",
    "OrderTransition",
    "OrderValidationRecord",
    "ConsumeRequest",
    "CreditPool",
    "CreditStatus",
    "CreditUsage",
    "DeactivatePoolRequest",
    "PoolStatus",
    "ReconciliationReport",
    "RepairResult",
    "UnbalancedPool",
    "ErrorDetail",
    "ErrorResponse",
]

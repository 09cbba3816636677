"""Pydantic schemas for ledger reconciliation."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class UnbalancedPool(BaseModel):
    """Pool whose remaining count disagrees with its receipts."""

    pool_id: UUID
    total_credits: int
    remaining_credits: int
    receipt_count: int


class ReconciliationReport(BaseModel):
    """Result of a ledger consistency scan."""

    checked_at: datetime = Field(default_factory=datetime.utcnow)
    authorized_orders_without_pool: list[UUID] = Field(default_factory=list)
    pools_without_authorized_order: list[UUID] = Field(default_factory=list)
    unbalanced_pools: list[UnbalancedPool] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        """True when no inconsistency was found."""
        return not (
            self.authorized_orders_without_pool
            or self.pools_without_authorized_order
            or self.unbalanced_pools
        )


class RepairResult(BaseModel):
    """Outcome of repairing one authorized order."""

    order_id: UUID
    pool_id: UUID
    created: bool = Field(..., description="False when the pool already existed")

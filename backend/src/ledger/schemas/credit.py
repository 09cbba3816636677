"""Pydantic schemas for credit pools and usage receipts."""
import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PoolStatus(str, enum.Enum):
    """Derived display status of a credit pool."""

    UNUSED = "unused"
    PARTIALLY_USED = "partially_used"
    EXHAUSTED = "exhausted"
    INACTIVE = "inactive"


class CreditPool(BaseModel):
    """Schema for returning credit pool data."""

    id: UUID
    user_id: str
    order_id: UUID
    order_number: str
    plan_id: str
    plan_name: str | None
    total_credits: int
    remaining_credits: int
    is_active: bool
    expires_at: datetime | None
    deactivated_at: datetime | None
    created_at: datetime
    status: PoolStatus | None = None

    model_config = ConfigDict(from_attributes=True)


class CreditUsage(BaseModel):
    """Schema for returning a usage receipt."""

    id: UUID
    user_id: str
    credit_pool_id: UUID
    order_id: UUID
    order_number: str
    subject_id: str
    label: str | None
    idempotency_key: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConsumeRequest(BaseModel):
    """Schema for debiting one credit."""

    subject_id: str = Field(..., min_length=1, description="What consumed the credit (e.g. simulation run ID)")
    label: str | None = Field(default=None, description="Display label for the consumer")
    idempotency_key: str | None = Field(
        default=None,
        min_length=1,
        description="Repeat calls with the same key return the original receipt",
    )


class DeactivatePoolRequest(BaseModel):
    """Schema for an administrative pool reversal."""

    reason: str | None = Field(default=None, description="Why the pool is being deactivated (refund, fraud, ...)")


class CreditStatus(BaseModel):
    """Aggregate view of a user's credits."""

    user_id: str
    total_credits: int
    remaining_credits: int
    used_credits: int
    active_pools: list[CreditPool]
    all_pools: list[CreditPool]
    has_available_credits: bool

"""Pydantic schemas for Order model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ledger.models.order import OrderStatus, PaymentMethod, ValidationType


class OrderBase(BaseModel):
    """Base order schema with common fields."""

    user_id: str = Field(..., min_length=1, description="Buyer identity")
    user_email: str | None = Field(default=None, description="Buyer email, for display")
    user_name: str | None = Field(default=None, description="Buyer name, for display")
    plan_id: str = Field(..., min_length=1, description="Plan identifier")
    plan_name: str | None = Field(default=None, description="Plan display name")
    plan_credits: int = Field(..., gt=0, description="Credits granted once the order is authorized")
    amount: int = Field(..., ge=0, description="Amount in minor currency units")
    currency: str = Field(default="XOF", min_length=3, max_length=3, description="ISO 4217 currency code")
    payment_method: PaymentMethod = Field(..., description="Payment method tag")


class OrderCreate(OrderBase):
    """Schema for creating a new order."""

    notes: str | None = Field(default=None, description="Free-text notes")


class OrderTransition(BaseModel):
    """Schema for requesting a status transition."""

    target_status: OrderStatus = Field(..., description="Requested status")
    notes: str | None = Field(default=None, description="Free-text notes recorded with the transition")


class OrderValidationRecord(BaseModel):
    """Schema for returning an approval-trail entry."""

    id: UUID
    validator_id: str
    validator_name: str | None
    type: ValidationType
    from_status: str
    to_status: str
    notes: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Order(OrderBase):
    """Schema for returning order data."""

    id: UUID
    order_number: str
    status: OrderStatus
    validated_at: datetime | None
    validated_by: str | None
    authorized_at: datetime | None
    authorized_by: str | None
    receipt_number: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderList(BaseModel):
    """Schema for paginated order list."""

    items: list[Order]
    total: int
    page: int
    page_size: int


class OrderFilters(BaseModel):
    """Search filters for order listings."""

    status: OrderStatus | None = None
    user_id: str | None = None
    order_number: str | None = Field(default=None, description="Case-insensitive substring match")
    date_from: datetime | None = None
    date_to: datetime | None = None
    validated_by: str | None = None
    authorized_by: str | None = None


class OrderStats(BaseModel):
    """Order counts and amounts per status."""

    total_orders: int
    pending_validation: int
    validated: int
    authorized: int
    cancelled: int
    expired: int
    total_amount: int
    today_orders: int
    today_amount: int

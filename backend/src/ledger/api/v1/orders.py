"""Order API endpoints."""
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.api.deps import get_capability_checker, get_current_actor, get_db, require_owner_or_capability
from ledger.auth.capabilities import Capability, CapabilityChecker
from ledger.models.order import OrderStatus
from ledger.schemas.order import (
    Order,
    OrderCreate,
    OrderFilters,
    OrderList,
    OrderStats,
    OrderTransition,
    OrderValidationRecord,
)
from ledger.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=Order, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> Order:
    """
    Create an order for a credit plan.

    The order starts in **pending_validation** and must be validated by a
    cashier, then authorized by an administrator, before credits are granted.
    Buyers order for themselves; cashiers and administrators may order on a
    buyer's behalf.
    """
    await require_owner_or_capability(
        capabilities,
        actor_id,
        order_data.user_id,
        f"create orders for user {order_data.user_id}",
        (Capability.CASHIER, Capability.ADMIN),
    )
    service = OrderService(db)
    order = await service.create_order(order_data, request_id=getattr(request.state, "request_id", None))
    await db.commit()
    return order


@router.get("", response_model=OrderList)
async def list_orders(
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    user_id: str | None = None,
    order_number: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    validated_by: str | None = None,
    authorized_by: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
) -> OrderList:
    """List orders, newest first."""
    filters = OrderFilters(
        status=status_filter,
        user_id=user_id,
        order_number=order_number,
        date_from=date_from,
        date_to=date_to,
        validated_by=validated_by,
        authorized_by=authorized_by,
    )
    orders, total = await OrderService(db).list_orders(filters, page=page, page_size=page_size)
    return OrderList(
        items=[Order.model_validate(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=OrderStats)
async def get_order_stats(
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
) -> OrderStats:
    """Order counts per status, with totals for today."""
    return await OrderService(db).get_order_stats()


@router.get("/users/{user_id}", response_model=list[Order])
async def list_user_orders(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> list[Order]:
    """All orders placed by one buyer, newest first."""
    await require_owner_or_capability(
        capabilities, actor_id, user_id, f"list orders of user {user_id}", (Capability.CASHIER, Capability.ADMIN)
    )
    orders = await OrderService(db).list_user_orders(user_id)
    return [Order.model_validate(order) for order in orders]


@router.get("/by-number/{order_number}", response_model=Order)
async def get_order_by_number(
    order_number: str,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
) -> Order:
    """Look up an order by its human-readable number."""
    return await OrderService(db).get_order_by_number(order_number)


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
) -> Order:
    """Get an order by ID."""
    return await OrderService(db).get_order(order_id)


@router.get("/{order_id}/history", response_model=list[OrderValidationRecord])
async def get_order_history(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
) -> list[OrderValidationRecord]:
    """Approval trail of an order."""
    return await OrderService(db).get_order_history(order_id)


@router.post("/{order_id}/transitions", response_model=Order)
async def transition_order(
    order_id: UUID,
    transition: OrderTransition,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> Order:
    """
    Move an order along its approval chain.

    - **validated**: cashier or administrator
    - **authorized**: administrator; creates the user's credit pool
    - **cancelled**: the buyer, a cashier or an administrator
    - **expired**: administrator

    Authorization and pool creation commit together or not at all.
    """
    service = OrderService(db, capabilities=capabilities)
    try:
        order = await service.transition(
            order_id,
            transition.target_status,
            actor_id=actor_id,
            notes=transition.notes,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return order

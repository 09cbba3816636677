"""Credit pool and consumption API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.api.deps import get_capability_checker, get_current_actor, get_db, require_owner_or_capability
from ledger.auth.capabilities import Capability, CapabilityChecker
from ledger.exceptions import PermissionDenied
from ledger.schemas.credit import (
    ConsumeRequest,
    CreditPool,
    CreditStatus,
    CreditUsage,
    DeactivatePoolRequest,
)
from ledger.services.consumption_service import CreditConsumptionService
from ledger.services.credit_pool_service import CreditPoolService, to_schema

router = APIRouter(prefix="/credits", tags=["credits"])

# Staff who may read any user's credits
BACK_OFFICE = (Capability.ADMIN, Capability.CASHIER)


@router.get("/{user_id}/pools", response_model=list[CreditPool])
async def list_pools(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> list[CreditPool]:
    """List a user's credit pools, oldest first (the order credits are consumed in)."""
    await require_owner_or_capability(capabilities, actor_id, user_id, f"read credits of user {user_id}", BACK_OFFICE)
    pools = await CreditPoolService(db).list_pools_for_user(user_id)
    return [to_schema(pool) for pool in pools]


@router.get("/{user_id}/status", response_model=CreditStatus)
async def get_credit_status(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> CreditStatus:
    """Totals of granted, remaining and used credits for a user."""
    await require_owner_or_capability(capabilities, actor_id, user_id, f"read credits of user {user_id}", BACK_OFFICE)
    return await CreditPoolService(db).get_credit_status(user_id)


@router.get("/{user_id}/usage", response_model=list[CreditUsage])
async def get_usage_history(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> list[CreditUsage]:
    """Credit usage receipts for a user, newest first."""
    await require_owner_or_capability(capabilities, actor_id, user_id, f"read credits of user {user_id}", BACK_OFFICE)
    return await CreditConsumptionService(db).get_usage_history(user_id, limit=limit)


@router.post("/{user_id}/consume", response_model=CreditUsage, status_code=status.HTTP_201_CREATED)
async def consume_credit(
    user_id: str,
    request: ConsumeRequest,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> CreditUsage:
    """
    Debit one credit from the user's oldest pool that still has credits.

    Without an **idempotency_key** every call is a new debit; callers must
    call at most once per consumable event.
    """
    await require_owner_or_capability(capabilities, actor_id, user_id, f"consume credits of user {user_id}")
    service = CreditConsumptionService(db)
    try:
        usage = await service.consume(
            user_id,
            request.subject_id,
            label=request.label,
            idempotency_key=request.idempotency_key,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return usage


@router.post("/pools/{pool_id}/deactivate", response_model=CreditPool)
async def deactivate_pool(
    pool_id: UUID,
    request: DeactivatePoolRequest,
    db: AsyncSession = Depends(get_db),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> CreditPool:
    """Administrative reversal: exclude a pool from consumption permanently."""
    if not await capabilities.has_capability(actor_id, Capability.ADMIN):
        raise PermissionDenied(actor_id, "deactivate credit pools", [Capability.ADMIN.value])

    pool = await CreditPoolService(db).deactivate_pool(pool_id, actor_id=actor_id, reason=request.reason)
    await db.commit()
    return to_schema(pool)

"""Ledger reconciliation API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from ledger.api.deps import get_capability_checker, get_current_actor, get_session_factory
from ledger.auth.capabilities import Capability, CapabilityChecker
from ledger.exceptions import PermissionDenied
from ledger.schemas.reconciliation import ReconciliationReport, RepairResult
from ledger.services.authorization_orchestrator import LedgerReconciler

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


async def _require_admin(capabilities: CapabilityChecker, actor_id: str, action: str) -> None:
    if not await capabilities.has_capability(actor_id, Capability.ADMIN):
        raise PermissionDenied(actor_id, action, [Capability.ADMIN.value])


@router.get("", response_model=ReconciliationReport)
async def check_ledger(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> ReconciliationReport:
    """Scan for authorized orders without pools, orphaned pools and unbalanced pools."""
    await _require_admin(capabilities, actor_id, "run ledger reconciliation")
    return await LedgerReconciler(session_factory).check()


@router.post("/orders/{order_id}/repair", response_model=RepairResult)
async def repair_order(
    order_id: UUID,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    capabilities: CapabilityChecker = Depends(get_capability_checker),
    actor_id: str = Depends(get_current_actor),
) -> RepairResult:
    """Create the missing credit pool of an authorized order."""
    await _require_admin(capabilities, actor_id, "repair credit pools")
    return await LedgerReconciler(session_factory).repair_missing_pool(order_id, actor_id=actor_id)

"""
Background jobs keeping orders and credit pools consistent.

- ``reconcile_ledger``: finds authorized orders without a credit pool (and
  other lost invariants), then creates the missing pools.
- ``expire_pending_orders``: expires orders left in pending_validation past
  the configured time-to-live.

Usage (with ARQ):
    arq ledger.workers.reconciliation.WorkerSettings
"""
from datetime import datetime, timedelta

import structlog

from ledger.config import settings
from ledger.database import AsyncSessionLocal
from ledger.exceptions import LedgerError, TransientStoreError
from ledger.services.authorization_orchestrator import LedgerReconciler
from ledger.services.order_service import OrderService

logger = structlog.get_logger(__name__)


async def reconcile_ledger(ctx: dict, session_factory=None) -> dict:  # noqa: ANN001
    """
    Detect inconsistencies and repair authorized orders missing their pool.

    Orphaned and unbalanced pools are only reported: they need an operator.

    Args:
        ctx: ARQ context (contains job info)
        session_factory: Session factory override (defaults to the app's)

    Returns:
        Dict with counts of inconsistencies found and pools repaired
    """
    reconciler = LedgerReconciler(session_factory or AsyncSessionLocal)
    logger.info("ledger_reconciliation_started", job_id=ctx.get("job_id"))

    report = await reconciler.check()

    repaired = 0
    failed = 0
    for order_id in report.authorized_orders_without_pool:
        try:
            result = await reconciler.repair_missing_pool(order_id, actor_id=settings.system_actor_id)
            if result.created:
                repaired += 1
        except (LedgerError, TransientStoreError) as e:
            failed += 1
            logger.error("credit_pool_repair_failed", order_id=str(order_id), error=str(e))

    summary = {
        "authorized_orders_without_pool": len(report.authorized_orders_without_pool),
        "pools_without_authorized_order": len(report.pools_without_authorized_order),
        "unbalanced_pools": len(report.unbalanced_pools),
        "repaired": repaired,
        "failed": failed,
    }
    logger.info("ledger_reconciliation_completed", **summary)
    return summary


async def expire_pending_orders(ctx: dict, session_factory=None, now: datetime | None = None) -> dict:  # noqa: ANN001
    """
    Expire orders that were never validated.

    Args:
        ctx: ARQ context (contains job info)
        session_factory: Session factory override (defaults to the app's)
        now: Reference time (defaults to utcnow)

    Returns:
        Dict with the number of orders expired
    """
    cutoff = (now or datetime.utcnow()) - timedelta(hours=settings.pending_order_ttl_hours)
    factory = session_factory or AsyncSessionLocal

    async with factory() as db:
        try:
            expired = await OrderService(db).expire_stale_orders(cutoff)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("order_expiry_failed", job_id=ctx.get("job_id"))
            raise

    logger.info("pending_orders_expired", count=len(expired), cutoff=cutoff.isoformat())
    return {"expired": len(expired)}


class WorkerSettings:
    """
    ARQ worker settings for ledger maintenance.

    Schedule:
    - Reconciliation: every 15 minutes
    - Pending order expiry: hourly

    Usage:
        arq ledger.workers.reconciliation.WorkerSettings
    """

    functions = [
        reconcile_ledger,
        expire_pending_orders,
    ]

    cron_jobs = [
        {
            "function": reconcile_ledger,
            "cron": "*/15 * * * *",
            "timeout": 300,
        },
        {
            "function": expire_pending_orders,
            "cron": "5 * * * *",
            "timeout": 300,
        },
    ]

    max_jobs = 1
    job_timeout = 600

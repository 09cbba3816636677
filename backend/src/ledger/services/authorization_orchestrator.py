"""Bridge between order authorization and credit pool creation.

Invariant: every authorized order has exactly one credit pool and every
credit pool belongs to an authorized order. ``AuthorizationOrchestrator``
keeps it inside the authorizing transaction; ``LedgerReconciler`` detects and
repairs rows that lost it (legacy data, manual edits, half-applied writes).
"""
from uuid import UUID

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger import metrics
from ledger.config import settings
from ledger.exceptions import (
    DuplicatePool,
    InconsistentLedger,
    InvalidOrder,
    OrderNotFound,
    TransientStoreError,
    translate_store_errors,
)
from ledger.models.credit_pool import CreditPool
from ledger.models.credit_usage import CreditUsage
from ledger.models.order import Order, OrderStatus
from ledger.schemas.reconciliation import ReconciliationReport, RepairResult, UnbalancedPool
from ledger.services.credit_pool_service import CreditPoolService
from ledger.utils.audit import log_audit

logger = structlog.get_logger(__name__)


class AuthorizationOrchestrator:
    """Creates the credit pool for an order as part of its authorization."""

    def __init__(self, db: AsyncSession, pool_service: CreditPoolService | None = None):
        """Initialize orchestrator with database session."""
        self.db = db
        self.pool_service = pool_service or CreditPoolService(db)

    async def on_order_authorized(self, order: Order) -> CreditPool:
        """
        Ensure the authorized order has its credit pool.

        Runs in the caller's transaction: if pool creation fails, the caller
        must roll back the status change too. A pool that already exists is
        not an error here, so re-running authorization never creates a second
        pool.

        Args:
            order: Order that has just been authorized

        Returns:
            The order's pool (new or pre-existing)

        Raises:
            InconsistentLedger: If the order is not in authorized status
        """
        if order.status != OrderStatus.AUTHORIZED:
            logger.error("authorization_hook_on_unauthorized_order", order_id=str(order.id), status=order.status.value)
            raise InconsistentLedger(f"Order {order.id} is {order.status.value}, expected authorized")

        try:
            return await self.pool_service.create_pool_from_order(order)
        except DuplicatePool:
            metrics.credit_pool_duplicates_total.inc()
            logger.info("credit_pool_duplicate_ignored", order_id=str(order.id), order_number=order.order_number)
            pool = await self.pool_service.get_pool_for_order(order.id)
            if pool is None:
                raise InconsistentLedger(f"Duplicate pool reported for order {order.id} but none was found")
            return pool

    async def find_authorized_orders_without_pool(self) -> list[UUID]:
        """Authorized orders whose pool is missing."""
        result = await self.db.execute(
            select(Order.id)
            .outerjoin(CreditPool, CreditPool.order_id == Order.id)
            .where(Order.status == OrderStatus.AUTHORIZED, CreditPool.id.is_(None))
            .order_by(Order.authorized_at)
        )
        return list(result.scalars().all())

    async def find_pools_without_authorized_order(self) -> list[UUID]:
        """Pools whose source order is missing or not authorized."""
        result = await self.db.execute(
            select(CreditPool.id)
            .outerjoin(Order, Order.id == CreditPool.order_id)
            .where(or_(Order.id.is_(None), Order.status != OrderStatus.AUTHORIZED))
            .order_by(CreditPool.created_at)
        )
        return list(result.scalars().all())

    async def find_unbalanced_pools(self) -> list[UnbalancedPool]:
        """Pools where ``remaining + receipts != total``."""
        receipt_count = func.count(CreditUsage.id)
        result = await self.db.execute(
            select(
                CreditPool.id,
                CreditPool.total_credits,
                CreditPool.remaining_credits,
                receipt_count,
            )
            .outerjoin(CreditUsage, CreditUsage.credit_pool_id == CreditPool.id)
            .group_by(CreditPool.id, CreditPool.total_credits, CreditPool.remaining_credits)
            .having(CreditPool.remaining_credits + receipt_count != CreditPool.total_credits)
        )
        return [
            UnbalancedPool(
                pool_id=row[0],
                total_credits=row[1],
                remaining_credits=row[2],
                receipt_count=row[3],
            )
            for row in result.all()
        ]

    @translate_store_errors
    async def find_inconsistencies(self) -> ReconciliationReport:
        """
        Scan the ledger for lost invariants.

        Returns:
            Report listing every inconsistency found
        """
        return ReconciliationReport(
            authorized_orders_without_pool=await self.find_authorized_orders_without_pool(),
            pools_without_authorized_order=await self.find_pools_without_authorized_order(),
            unbalanced_pools=await self.find_unbalanced_pools(),
        )


class LedgerReconciler:
    """
    Detects and repairs half-applied authorizations.

    Each repair runs in its own session; pool creation is idempotent thanks to
    the unique order constraint, so transient store faults are retried.
    """

    def __init__(self, session_factory: async_sessionmaker, wait=None, max_attempts: int | None = None):  # noqa: ANN001
        """Initialize reconciler with a session factory."""
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.pool_creation_max_attempts
        self.wait = wait or wait_exponential(multiplier=1, min=1, max=settings.pool_creation_backoff_max_seconds)

    async def check(self) -> ReconciliationReport:
        """
        Run a consistency scan and publish the results.

        Any inconsistency is logged at error level: it is a lost invariant,
        not a condition to retry silently.
        """
        async with self.session_factory() as session:
            report = await AuthorizationOrchestrator(session).find_inconsistencies()

        counts = {
            "orphaned_authorization": len(report.authorized_orders_without_pool),
            "orphaned_pool": len(report.pools_without_authorized_order),
            "unbalanced_pool": len(report.unbalanced_pools),
        }
        for kind, count in counts.items():
            metrics.ledger_inconsistencies_gauge.labels(kind=kind).set(count)

        if report.is_consistent:
            logger.info("ledger_reconciliation_clean")
        else:
            logger.error(
                "ledger_inconsistency_detected",
                authorized_orders_without_pool=[str(o) for o in report.authorized_orders_without_pool],
                pools_without_authorized_order=[str(p) for p in report.pools_without_authorized_order],
                unbalanced_pools=[str(p.pool_id) for p in report.unbalanced_pools],
            )
        return report

    @translate_store_errors
    async def _repair_once(self, order_id: UUID, actor_id: str | None) -> RepairResult:
        async with self.session_factory() as session:
            try:
                order = (await session.execute(select(Order).where(Order.id == order_id))).scalar_one_or_none()
                if order is None:
                    raise OrderNotFound(order_id)
                if order.status != OrderStatus.AUTHORIZED:
                    raise InvalidOrder(f"Order {order_id} is {order.status.value}; only authorized orders can be repaired")

                orchestrator = AuthorizationOrchestrator(session)
                existing = await orchestrator.pool_service.get_pool_for_order(order_id)
                pool = existing or await orchestrator.on_order_authorized(order)
                created = existing is None

                if created:
                    await log_audit(
                        session,
                        entity_type="credit_pool",
                        entity_id=pool.id,
                        action="repair",
                        user_id=actor_id,
                        changes={"order_id": {"old": None, "new": str(order_id)}},
                    )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info("credit_pool_repaired", order_id=str(order_id), pool_id=str(pool.id), created=created)
        return RepairResult(order_id=order_id, pool_id=pool.id, created=created)

    async def repair_missing_pool(self, order_id: UUID, actor_id: str | None = None) -> RepairResult:
        """
        Create the pool for an authorized order that lacks one.

        Retries only on TransientStoreError; business errors surface at once.

        Args:
            order_id: Authorized order to repair
            actor_id: Operator (or system actor) performing the repair

        Returns:
            Repair outcome; ``created`` is False if the pool already existed
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(TransientStoreError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "credit_pool_repair_retry",
                        order_id=str(order_id),
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._repair_once(order_id, actor_id)

    async def repair_all(self, actor_id: str | None = None) -> list[RepairResult]:
        """Repair every authorized order currently missing its pool."""
        async with self.session_factory() as session:
            order_ids = await AuthorizationOrchestrator(session).find_authorized_orders_without_pool()

        results = []
        for order_id in order_ids:
            results.append(await self.repair_missing_pool(order_id, actor_id=actor_id))
        return results

"""Service owning credit pools: one per authorized order."""
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import metrics
from ledger.exceptions import DuplicatePool, InconsistentLedger, PoolNotFound, translate_store_errors
from ledger.models.credit_pool import CreditPool
from ledger.models.order import Order, OrderStatus
from ledger.schemas.credit import CreditPool as CreditPoolSchema
from ledger.schemas.credit import CreditStatus, PoolStatus
from ledger.utils.audit import field_change, log_audit

logger = structlog.get_logger(__name__)


def pool_status(pool: CreditPool) -> PoolStatus:
    """
    Derive a pool's display status.

    Inactive overrides every usage-based status.
    """
    if not pool.is_active:
        return PoolStatus.INACTIVE
    if pool.remaining_credits == 0:
        return PoolStatus.EXHAUSTED
    if pool.remaining_credits == pool.total_credits:
        return PoolStatus.UNUSED
    return PoolStatus.PARTIALLY_USED


def to_schema(pool: CreditPool) -> CreditPoolSchema:
    """Serialize a pool together with its derived status."""
    data = CreditPoolSchema.model_validate(pool)
    data.status = pool_status(pool)
    return data


class CreditPoolService:
    """Service for creating, listing and deactivating credit pools."""

    def __init__(self, db: AsyncSession):
        """Initialize credit pool service with database session."""
        self.db = db

    async def get_pool_for_order(self, order_id: UUID) -> CreditPool | None:
        """Return the pool created from an order, if any."""
        result = await self.db.execute(select(CreditPool).where(CreditPool.order_id == order_id))
        return result.scalar_one_or_none()

    @translate_store_errors
    async def create_pool_from_order(self, order: Order, created_at: datetime | None = None) -> CreditPool:
        """
        Create the credit pool for an authorized order.

        The insert runs inside a SAVEPOINT; the unique constraint on
        ``order_id`` is the final guard against concurrent creation, and a
        trip of that constraint leaves the caller's transaction usable.

        Args:
            order: Authorized order
            created_at: FIFO timestamp (defaults to now)

        Returns:
            Created pool

        Raises:
            InconsistentLedger: If the order is not authorized
            DuplicatePool: If a pool already exists for the order
        """
        if order.status != OrderStatus.AUTHORIZED:
            raise InconsistentLedger(
                f"Order {order.id} is {order.status.value}; only authorized orders receive a credit pool"
            )

        if await self.get_pool_for_order(order.id) is not None:
            raise DuplicatePool(order.id)

        pool = CreditPool(
            user_id=order.user_id,
            order_id=order.id,
            order_number=order.order_number,
            plan_id=order.plan_id,
            plan_name=order.plan_name,
            total_credits=order.plan_credits,
            remaining_credits=order.plan_credits,
            is_active=True,
            created_at=created_at or datetime.utcnow(),
        )

        try:
            async with self.db.begin_nested():
                self.db.add(pool)
                await self.db.flush()
        except IntegrityError as e:
            # Lost a race with another creator for the same order
            raise DuplicatePool(order.id) from e

        await self.db.refresh(pool)

        metrics.credit_pools_created_total.inc()
        logger.info(
            "credit_pool_created",
            pool_id=str(pool.id),
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=order.user_id,
            total_credits=pool.total_credits,
        )
        return pool

    async def get_pool(self, pool_id: UUID) -> CreditPool:
        """
        Get pool by ID.

        Raises:
            PoolNotFound: If the pool does not exist
        """
        result = await self.db.execute(select(CreditPool).where(CreditPool.id == pool_id))
        pool = result.scalar_one_or_none()
        if pool is None:
            raise PoolNotFound(pool_id)
        return pool

    @translate_store_errors
    async def list_pools_for_user(self, user_id: str) -> list[CreditPool]:
        """
        List all pools for a user in FIFO order.

        Args:
            user_id: Owning user

        Returns:
            Pools ordered by creation time, oldest first (ties by pool ID)
        """
        result = await self.db.execute(
            select(CreditPool)
            .where(CreditPool.user_id == user_id)
            .order_by(CreditPool.created_at, CreditPool.id)
        )
        return list(result.scalars().all())

    @translate_store_errors
    async def deactivate_pool(self, pool_id: UUID, actor_id: str | None = None, reason: str | None = None) -> CreditPool:
        """
        Permanently exclude a pool from consumption (administrative reversal).

        ``remaining_credits`` is left untouched so the pool still balances
        against its receipts.

        Args:
            pool_id: Pool UUID
            actor_id: Administrator performing the reversal
            reason: Free-text reason (refund, fraud, ...)

        Returns:
            Updated pool

        Raises:
            PoolNotFound: If the pool does not exist
        """
        pool = await self.get_pool(pool_id)
        if not pool.is_active:
            return pool

        now = datetime.utcnow()
        await self.db.execute(
            update(CreditPool)
            .where(CreditPool.id == pool_id)
            .values(is_active=False, deactivated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(pool)

        changes = {"is_active": field_change(True, False)}
        if reason:
            changes["reason"] = field_change(None, reason)
        await log_audit(
            self.db,
            entity_type="credit_pool",
            entity_id=pool.id,
            action="deactivate",
            user_id=actor_id,
            changes=changes,
        )

        metrics.credit_pools_deactivated_total.inc()
        logger.info(
            "credit_pool_deactivated",
            pool_id=str(pool.id),
            user_id=pool.user_id,
            remaining_credits=pool.remaining_credits,
            actor_id=actor_id,
            reason=reason,
        )
        return pool

    async def get_credit_status(self, user_id: str) -> CreditStatus:
        """
        Aggregate a user's credits across all pools.

        Args:
            user_id: Owning user

        Returns:
            Totals plus the eligible (active, non-exhausted) pools
        """
        pools = await self.list_pools_for_user(user_id)

        total_credits = sum(p.total_credits for p in pools)
        remaining_credits = sum(p.remaining_credits for p in pools)
        active_pools = [to_schema(p) for p in pools if p.is_eligible]

        return CreditStatus(
            user_id=user_id,
            total_credits=total_credits,
            remaining_credits=remaining_credits,
            used_credits=total_credits - remaining_credits,
            active_pools=active_pools,
            all_pools=[to_schema(p) for p in pools],
            has_available_credits=bool(active_pools),
        )

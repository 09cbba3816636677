"""Service debiting credits in FIFO order."""
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger import metrics
from ledger.config import settings
from ledger.exceptions import IdempotencyConflict, NoCreditsAvailable, translate_store_errors
from ledger.models.credit_pool import CreditPool
from ledger.models.credit_usage import CreditUsage

logger = structlog.get_logger(__name__)


class CreditConsumptionService:
    """
    Service for consuming credits.

    A debit is one guarded UPDATE (``remaining_credits - 1 WHERE
    remaining_credits > 0 AND is_active``) followed by the receipt INSERT in the
    same transaction. The pool row is never read, modified in Python and
    written back, so concurrent consumers cannot both spend the same unit.
    """

    def __init__(self, db: AsyncSession, max_attempts: int | None = None):
        """Initialize consumption service with database session."""
        self.db = db
        self.max_attempts = max_attempts or settings.consume_max_attempts

    def _eligible_pools_query(self, user_id: str):  # noqa: ANN202
        return (
            select(CreditPool)
            .where(
                CreditPool.user_id == user_id,
                CreditPool.is_active.is_(True),
                CreditPool.remaining_credits > 0,
            )
            .order_by(CreditPool.created_at, CreditPool.id)
        )

    async def _find_oldest_eligible_pool(self, user_id: str) -> CreditPool | None:
        result = await self.db.execute(self._eligible_pools_query(user_id).limit(1))
        return result.scalar_one_or_none()

    async def _try_decrement(self, pool_id: UUID) -> bool:
        """Atomically take one unit from a pool; False if another consumer got there first."""
        result = await self.db.execute(
            update(CreditPool)
            .where(
                CreditPool.id == pool_id,
                CreditPool.is_active.is_(True),
                CreditPool.remaining_credits > 0,
            )
            .values(
                remaining_credits=CreditPool.remaining_credits - 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_receipt_by_idempotency_key(self, user_id: str, idempotency_key: str) -> CreditUsage | None:
        """Return the user's receipt recorded under an idempotency key, if any."""
        result = await self.db.execute(
            select(CreditUsage).where(
                CreditUsage.user_id == user_id,
                CreditUsage.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    @translate_store_errors
    async def consume(
        self,
        user_id: str,
        subject_id: str,
        label: str | None = None,
        idempotency_key: str | None = None,
    ) -> CreditUsage:
        """
        Debit one credit from the user's oldest eligible pool.

        Every call without an idempotency key is a fresh debit. With a key, a
        repeated call by the same user for the same subject returns the
        receipt of the first call. Keys are scoped per user.

        Args:
            user_id: Consuming user
            subject_id: What consumed the credit (e.g. simulation run ID)
            label: Display label for the consumer
            idempotency_key: Optional replay guard

        Returns:
            Usage receipt for the debit

        Raises:
            NoCreditsAvailable: If no active pool has remaining credits
            IdempotencyConflict: If the key was already used for another subject,
                or a concurrent call with the same key won the race
        """
        if idempotency_key:
            existing = await self.get_receipt_by_idempotency_key(user_id, idempotency_key)
            if existing is not None:
                if existing.subject_id != subject_id:
                    raise IdempotencyConflict(
                        user_id, idempotency_key, f"was already used for subject {existing.subject_id}"
                    )
                logger.info(
                    "credit_consume_replayed",
                    user_id=user_id,
                    subject_id=subject_id,
                    receipt_id=str(existing.id),
                )
                return existing

        for attempt in range(1, self.max_attempts + 1):
            pool = await self._find_oldest_eligible_pool(user_id)
            if pool is None:
                metrics.credit_consumption_rejected_total.labels(reason="no_credits").inc()
                logger.info("credit_consumption_rejected", user_id=user_id, subject_id=subject_id, reason="no_credits")
                raise NoCreditsAvailable(user_id)

            if await self._try_decrement(pool.id):
                break

            # Pool drained or deactivated since we selected it
            metrics.credit_consume_contention_total.inc()
            logger.debug("credit_consume_contention", user_id=user_id, pool_id=str(pool.id), attempt=attempt)
            # Drop the stale snapshot so the next selection re-reads the row
            self.db.expire(pool)
        else:
            metrics.credit_consumption_rejected_total.labels(reason="contention").inc()
            logger.warning(
                "credit_consumption_rejected",
                user_id=user_id,
                subject_id=subject_id,
                reason="contention",
                attempts=self.max_attempts,
            )
            raise NoCreditsAvailable(user_id)

        usage = CreditUsage(
            user_id=user_id,
            credit_pool_id=pool.id,
            order_id=pool.order_id,
            order_number=pool.order_number,
            subject_id=subject_id,
            label=label,
            idempotency_key=idempotency_key,
        )
        self.db.add(usage)
        try:
            await self.db.flush()
        except IntegrityError as e:
            if not idempotency_key:
                raise
            # Concurrent replay with the same key; the caller's transaction
            # must roll back the decrement above.
            logger.warning("credit_consume_idempotency_conflict", user_id=user_id, idempotency_key=idempotency_key)
            raise IdempotencyConflict(user_id, idempotency_key, "is being settled by a concurrent request") from e

        await self.db.refresh(pool)

        metrics.credits_consumed_total.inc()
        logger.info(
            "credit_consumed",
            user_id=user_id,
            subject_id=subject_id,
            pool_id=str(pool.id),
            order_number=pool.order_number,
            remaining_credits=pool.remaining_credits,
            receipt_id=str(usage.id),
        )
        return usage

    @translate_store_errors
    async def has_available_credits(self, user_id: str) -> bool:
        """
        Check whether the user has at least one eligible pool.

        Args:
            user_id: User to check

        Returns:
            True if a debit would currently find a pool
        """
        result = await self.db.execute(
            select(CreditPool.id)
            .where(
                CreditPool.user_id == user_id,
                CreditPool.is_active.is_(True),
                CreditPool.remaining_credits > 0,
            )
            .limit(1)
        )
        return result.first() is not None

    async def get_usage_history(self, user_id: str, limit: int = 100) -> list[CreditUsage]:
        """List a user's receipts, newest first."""
        result = await self.db.execute(
            select(CreditUsage)
            .where(CreditUsage.user_id == user_id)
            .order_by(CreditUsage.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_usage_for_pool(self, pool_id: UUID) -> list[CreditUsage]:
        """List the receipts debited from one pool, oldest first."""
        result = await self.db.execute(
            select(CreditUsage)
            .where(CreditUsage.credit_pool_id == pool_id)
            .order_by(CreditUsage.created_at)
        )
        return list(result.scalars().all())

"""Order service: purchase intents and their approval chain."""
import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ledger import metrics
from ledger.auth.capabilities import AdminUserCapabilityChecker, CapabilityChecker
from ledger.config import settings
from ledger.exceptions import (
    InvalidOrder,
    InvalidTransition,
    OrderNotFound,
    PermissionDenied,
    translate_store_errors,
)
from ledger.models.order import Order, OrderStatus, OrderValidation
from ledger.schemas.order import OrderCreate, OrderFilters, OrderStats
from ledger.services import order_state_machine
from ledger.services.authorization_orchestrator import AuthorizationOrchestrator
from ledger.utils.audit import log_audit

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _reference(prefix: str, suffix_length: int) -> str:
    """Build ``<prefix>-<last 6 digits of epoch ms>-<random base36>``."""
    timestamp = str(int(time.time() * 1000))[-6:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(suffix_length))
    return f"{prefix}-{timestamp}-{suffix}"


def generate_order_number() -> str:
    """Human-readable order number, e.g. CMD-482913-K7QZ."""
    return _reference(settings.order_number_prefix, 4)


def generate_receipt_number() -> str:
    """Cashier receipt number, e.g. RCP-482913-A1B."""
    return _reference(settings.receipt_number_prefix, 3)


class OrderService:
    """Service layer for order creation and status transitions."""

    ORDER_NUMBER_ATTEMPTS = 5

    def __init__(
        self,
        db: AsyncSession,
        capabilities: CapabilityChecker | None = None,
        orchestrator: AuthorizationOrchestrator | None = None,
    ):
        """Initialize order service with database session and identity port."""
        self.db = db
        self.capabilities = capabilities or AdminUserCapabilityChecker(db)
        self.orchestrator = orchestrator or AuthorizationOrchestrator(db)

    @translate_store_errors
    async def create_order(self, order_data: OrderCreate, request_id: str | None = None) -> Order:
        """
        Create a new order awaiting cashier validation.

        Args:
            order_data: Order creation data

        Returns:
            Created order in pending_validation status

        Raises:
            InvalidOrder: If credits, amount or currency are invalid, or no
                unique order number could be generated
        """
        if order_data.plan_credits <= 0:
            raise InvalidOrder("plan_credits must be greater than 0")
        if order_data.amount < 0:
            raise InvalidOrder("amount must not be negative")
        if len(order_data.currency) != 3 or not order_data.currency.isalpha():
            raise InvalidOrder(f"Invalid currency code {order_data.currency!r}")

        for attempt in range(1, self.ORDER_NUMBER_ATTEMPTS + 1):
            order = Order(
                order_number=generate_order_number(),
                user_id=order_data.user_id,
                user_email=order_data.user_email,
                user_name=order_data.user_name,
                plan_id=order_data.plan_id,
                plan_name=order_data.plan_name,
                plan_credits=order_data.plan_credits,
                amount=order_data.amount,
                currency=order_data.currency.upper(),
                payment_method=order_data.payment_method,
                status=OrderStatus.PENDING_VALIDATION,
                notes=order_data.notes,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(order)
                    await self.db.flush()
                break
            except IntegrityError:
                logger.warning("order_number_collision", order_number=order.order_number, attempt=attempt)
        else:
            raise InvalidOrder("Could not generate a unique order number")

        await self.db.refresh(order)
        await log_audit(
            self.db,
            entity_type="order",
            entity_id=order.id,
            action="create",
            user_id=order.user_id,
            request_id=request_id,
        )

        metrics.orders_created_total.labels(payment_method=order.payment_method.value).inc()
        logger.info(
            "order_created",
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=order.user_id,
            plan_id=order.plan_id,
            plan_credits=order.plan_credits,
            amount=order.amount,
            currency=order.currency,
        )
        return order

    async def get_order(self, order_id: UUID) -> Order:
        """
        Get order by ID.

        Raises:
            OrderNotFound: If the order does not exist
        """
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def get_order_by_number(self, order_number: str) -> Order:
        """
        Get order by its human-readable number.

        Raises:
            OrderNotFound: If no order carries that number
        """
        result = await self.db.execute(select(Order).where(Order.order_number == order_number))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_number)
        return order

    async def get_order_history(self, order_id: UUID) -> list[OrderValidation]:
        """Approval trail of an order, oldest first."""
        result = await self.db.execute(
            select(Order).where(Order.id == order_id).options(selectinload(Order.validations))
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_id)
        return list(order.validations)

    async def list_orders(
        self,
        filters: OrderFilters | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Order], int]:
        """
        List orders matching filters, newest first.

        Args:
            filters: Optional search filters
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (orders, total_count)
        """
        query = select(Order)
        filters = filters or OrderFilters()

        if filters.status:
            query = query.where(Order.status == filters.status)
        if filters.user_id:
            query = query.where(Order.user_id == filters.user_id)
        if filters.order_number:
            query = query.where(func.lower(Order.order_number).contains(filters.order_number.lower()))
        if filters.date_from:
            query = query.where(Order.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(Order.created_at <= filters.date_to)
        if filters.validated_by:
            query = query.where(Order.validated_by == filters.validated_by)
        if filters.authorized_by:
            query = query.where(Order.authorized_by == filters.authorized_by)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        query = query.order_by(Order.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_user_orders(self, user_id: str) -> list[Order]:
        """All orders placed by a user, newest first."""
        result = await self.db.execute(
            select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_order_stats(self, now: datetime | None = None) -> OrderStats:
        """
        Count orders per status and sum their amounts.

        Args:
            now: Reference time for "today" (defaults to current UTC time)

        Returns:
            Order statistics
        """
        now = now or datetime.utcnow()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        status_result = await self.db.execute(
            select(Order.status, func.count(Order.id)).group_by(Order.status)
        )
        per_status = {status: count for status, count in status_result.all()}

        totals_result = await self.db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.amount), 0))
        )
        total_orders, total_amount = totals_result.one()

        today_result = await self.db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.amount), 0)).where(
                Order.created_at >= today_start,
                Order.created_at < today_start + timedelta(days=1),
            )
        )
        today_orders, today_amount = today_result.one()

        return OrderStats(
            total_orders=total_orders,
            pending_validation=per_status.get(OrderStatus.PENDING_VALIDATION, 0),
            validated=per_status.get(OrderStatus.VALIDATED, 0),
            authorized=per_status.get(OrderStatus.AUTHORIZED, 0),
            cancelled=per_status.get(OrderStatus.CANCELLED, 0),
            expired=per_status.get(OrderStatus.EXPIRED, 0),
            total_amount=int(total_amount),
            today_orders=today_orders,
            today_amount=int(today_amount),
        )

    async def _check_permission(
        self, order: Order, rule: order_state_machine.TransitionRule, actor_id: str, target: OrderStatus
    ) -> None:
        if rule.allow_owner and actor_id == order.user_id:
            return
        for capability in rule.required:
            if await self.capabilities.has_capability(actor_id, capability):
                return

        logger.warning(
            "order_transition_denied",
            order_id=str(order.id),
            actor_id=actor_id,
            target_status=target.value,
            required=[c.value for c in rule.required],
        )
        raise PermissionDenied(
            actor_id,
            f"move order {order.order_number} to {target.value}",
            [c.value for c in rule.required],
        )

    @translate_store_errors
    async def transition(
        self,
        order_id: UUID,
        target_status: OrderStatus,
        actor_id: str,
        notes: str | None = None,
        check_permissions: bool = True,
    ) -> Order:
        """
        Move an order to a new status.

        The status write is a compare-and-set on the current status, so
        concurrent approvers cannot both succeed. Authorization creates the
        credit pool in the same transaction; if that fails the caller must
        roll back, leaving the order validated.

        Args:
            order_id: Order UUID
            target_status: Requested status
            actor_id: Actor performing the transition
            notes: Free-text notes stored on the order and the approval trail
            check_permissions: Skip capability checks (maintenance worker only)

        Returns:
            Updated order

        Raises:
            OrderNotFound: If the order does not exist
            InvalidTransition: If target_status is not a legal successor
            PermissionDenied: If the actor lacks the required capability
        """
        if not actor_id:
            raise PermissionDenied("anonymous", f"move order {order_id} to {target_status.value}", ["actor_id"])

        order = await self.get_order(order_id)
        current = order.status

        rule = order_state_machine.get_rule(current, target_status)
        if rule is None:
            logger.info(
                "order_transition_rejected",
                order_id=str(order_id),
                current_status=current.value,
                target_status=target_status.value,
            )
            raise InvalidTransition(order_id, current.value, target_status.value)

        if check_permissions:
            await self._check_permission(order, rule, actor_id, target_status)

        now = datetime.utcnow()
        values: dict[str, Any] = {"status": target_status, "updated_at": now}
        if target_status == OrderStatus.VALIDATED:
            values.update(validated_at=now, validated_by=actor_id, receipt_number=generate_receipt_number())
        elif target_status == OrderStatus.AUTHORIZED:
            values.update(authorized_at=now, authorized_by=actor_id)
        if notes:
            values["notes"] = notes

        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Someone else moved the order after we read it
            await self.db.refresh(order)
            logger.info(
                "order_transition_conflict",
                order_id=str(order_id),
                expected_status=current.value,
                current_status=order.status.value,
                target_status=target_status.value,
            )
            raise InvalidTransition(order_id, order.status.value, target_status.value)

        await self.db.refresh(order)

        self.db.add(
            OrderValidation(
                order_id=order.id,
                validator_id=actor_id,
                validator_name=await self.capabilities.get_actor_name(actor_id),
                type=rule.validation_type,
                from_status=current.value,
                to_status=target_status.value,
                notes=notes,
            )
        )
        await self.db.flush()

        if target_status == OrderStatus.AUTHORIZED:
            await self.orchestrator.on_order_authorized(order)

        metrics.order_transitions_total.labels(from_status=current.value, to_status=target_status.value).inc()
        logger.info(
            "order_transitioned",
            order_id=str(order.id),
            order_number=order.order_number,
            from_status=current.value,
            to_status=target_status.value,
            actor_id=actor_id,
        )
        return order

    async def validate_order(self, order_id: UUID, actor_id: str, notes: str | None = None) -> Order:
        """Cashier validation: pending_validation -> validated."""
        return await self.transition(order_id, OrderStatus.VALIDATED, actor_id, notes)

    async def authorize_order(self, order_id: UUID, actor_id: str, notes: str | None = None) -> Order:
        """Administrator authorization: validated -> authorized, creating the credit pool."""
        return await self.transition(order_id, OrderStatus.AUTHORIZED, actor_id, notes)

    async def cancel_order(self, order_id: UUID, actor_id: str, notes: str | None = None) -> Order:
        """Cancel a non-terminal order."""
        return await self.transition(order_id, OrderStatus.CANCELLED, actor_id, notes)

    async def expire_stale_orders(self, older_than: datetime, actor_id: str | None = None) -> list[Order]:
        """
        Expire orders still pending validation since before a cutoff.

        Orders moved by someone else in the meantime are skipped.

        Args:
            older_than: Creation-time cutoff
            actor_id: Actor recorded on the transition (defaults to the system actor)

        Returns:
            Orders that were expired
        """
        actor_id = actor_id or settings.system_actor_id
        result = await self.db.execute(
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING_VALIDATION, Order.created_at < older_than)
            .order_by(Order.created_at)
        )
        expired = []
        for order_id in result.scalars().all():
            try:
                expired.append(
                    await self.transition(
                        order_id,
                        OrderStatus.EXPIRED,
                        actor_id,
                        notes="Expired: not validated in time",
                        check_permissions=False,
                    )
                )
            except InvalidTransition:
                logger.info("order_expiry_skipped", order_id=str(order_id))

        logger.info("stale_orders_expired", count=len(expired), older_than=older_than.isoformat())
        return expired

"""Integration tests for ledger reconciliation and repair."""
from datetime import datetime

import pytest
from sqlalchemy import update
from tenacity import wait_none

from ledger.models.order import OrderStatus


@pytest.mark.asyncio
async def test_clean_ledger_reports_consistent(session_factory, make_authorized_order, db_session) -> None:
    """A ledger where every authorized order has its pool is consistent."""
    from ledger.services.authorization_orchestrator import AuthorizationOrchestrator, LedgerReconciler

    order = await make_authorized_order()
    await AuthorizationOrchestrator(db_session).on_order_authorized(order)
    await db_session.commit()

    report = await LedgerReconciler(session_factory, wait=wait_none()).check()

    assert report.is_consistent


@pytest.mark.asyncio
async def test_detects_and_repairs_half_applied_authorization(session_factory, make_authorized_order, db_session) -> None:
    """An authorized order without a pool is reported, then repaired exactly once."""
    from ledger.models.audit_log import AuditLog
    from ledger.services.authorization_orchestrator import LedgerReconciler
    from ledger.services.credit_pool_service import CreditPoolService
    from sqlalchemy import select

    order = await make_authorized_order(plan_credits=7)
    await db_session.commit()

    reconciler = LedgerReconciler(session_factory, wait=wait_none())
    report = await reconciler.check()
    assert report.authorized_orders_without_pool == [order.id]
    assert not report.is_consistent

    result = await reconciler.repair_missing_pool(order.id, actor_id="admin-1")
    assert result.created is True

    again = await reconciler.repair_missing_pool(order.id, actor_id="admin-1")
    assert again.created is False
    assert again.pool_id == result.pool_id

    async with session_factory() as session:
        pool = await CreditPoolService(session).get_pool_for_order(order.id)
        assert pool.remaining_credits == 7
        audits = (await session.execute(select(AuditLog).where(AuditLog.entity_id == pool.id))).scalars().all()
        assert [a.action for a in audits] == ["repair"]

    assert (await reconciler.check()).is_consistent


@pytest.mark.asyncio
async def test_detects_orphaned_and_unbalanced_pools(session_factory, make_authorized_order, db_session) -> None:
    """Pools of non-authorized orders and pools whose counts disagree are reported."""
    from ledger.models.credit_pool import CreditPool
    from ledger.models.order import Order
    from ledger.services.authorization_orchestrator import LedgerReconciler
    from ledger.services.credit_pool_service import CreditPoolService

    service = CreditPoolService(db_session)
    orphan = await service.create_pool_from_order(await make_authorized_order())
    unbalanced = await service.create_pool_from_order(await make_authorized_order(plan_credits=4))

    # Simulate manual edits made outside the ledger services
    await db_session.execute(
        update(Order).where(Order.id == orphan.order_id).values(status=OrderStatus.CANCELLED)
    )
    await db_session.execute(
        update(CreditPool).where(CreditPool.id == unbalanced.id).values(remaining_credits=2)
    )
    await db_session.commit()

    report = await LedgerReconciler(session_factory, wait=wait_none()).check()

    assert report.pools_without_authorized_order == [orphan.id]
    assert [p.pool_id for p in report.unbalanced_pools] == [unbalanced.id]
    assert report.unbalanced_pools[0].receipt_count == 0
    assert report.authorized_orders_without_pool == []


@pytest.mark.asyncio
async def test_repair_retries_transient_failures(session_factory, make_authorized_order, db_session) -> None:
    """A transient store fault during repair is retried until the pool exists."""
    from ledger.exceptions import TransientStoreError
    from ledger.services.authorization_orchestrator import LedgerReconciler

    order = await make_authorized_order()
    await db_session.commit()

    reconciler = LedgerReconciler(session_factory, wait=wait_none(), max_attempts=3)
    real_repair = reconciler._repair_once
    calls = []

    async def flaky_repair(order_id, actor_id):  # noqa: ANN001, ANN202
        calls.append(order_id)
        if len(calls) == 1:
            raise TransientStoreError("repair", ConnectionError("connection reset"))
        return await real_repair(order_id, actor_id)

    reconciler._repair_once = flaky_repair

    result = await reconciler.repair_missing_pool(order.id)

    assert result.created is True
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_repair_gives_up_after_max_attempts(session_factory, make_authorized_order, db_session) -> None:
    """Persistent transient faults surface after the configured attempts."""
    from ledger.exceptions import TransientStoreError
    from ledger.services.authorization_orchestrator import LedgerReconciler

    order = await make_authorized_order()
    await db_session.commit()

    reconciler = LedgerReconciler(session_factory, wait=wait_none(), max_attempts=3)
    calls = []

    async def always_down(order_id, actor_id):  # noqa: ANN001, ANN202
        calls.append(order_id)
        raise TransientStoreError("repair", ConnectionError("connection refused"))

    reconciler._repair_once = always_down

    with pytest.raises(TransientStoreError):
        await reconciler.repair_missing_pool(order.id)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_repair_does_not_retry_business_errors(session_factory, make_order, db_session) -> None:
    """Repairing an order that is not authorized fails at once."""
    from ledger.exceptions import InvalidOrder
    from ledger.services.authorization_orchestrator import LedgerReconciler

    order = await make_order(status=OrderStatus.VALIDATED)
    await db_session.commit()

    with pytest.raises(InvalidOrder):
        await LedgerReconciler(session_factory, wait=wait_none()).repair_missing_pool(order.id)


@pytest.mark.asyncio
async def test_reconcile_worker_repairs_all(session_factory, make_authorized_order, db_session) -> None:
    """The scheduled job repairs every authorized order missing its pool."""
    from ledger.workers.reconciliation import reconcile_ledger

    await make_authorized_order()
    await make_authorized_order()
    await db_session.commit()

    summary = await reconcile_ledger({"job_id": "test"}, session_factory=session_factory)

    assert summary["authorized_orders_without_pool"] == 2
    assert summary["repaired"] == 2
    assert summary["failed"] == 0

    summary = await reconcile_ledger({"job_id": "test"}, session_factory=session_factory)
    assert summary["repaired"] == 0


@pytest.mark.asyncio
async def test_expire_worker(session_factory, make_order, db_session) -> None:
    """The scheduled job expires orders pending longer than the TTL."""
    from datetime import timedelta

    from ledger.services.order_service import OrderService
    from ledger.workers.reconciliation import expire_pending_orders

    now = datetime.utcnow()
    stale = await make_order(created_at=now - timedelta(days=10))
    fresh = await make_order(created_at=now)
    await db_session.commit()

    summary = await expire_pending_orders({"job_id": "test"}, session_factory=session_factory, now=now)
    assert summary == {"expired": 1}

    async with session_factory() as session:
        assert (await OrderService(session).get_order(stale.id)).status == OrderStatus.EXPIRED
        assert (await OrderService(session).get_order(fresh.id)).status == OrderStatus.PENDING_VALIDATION

"""Integration tests for the admin_users capability checker."""
from datetime import datetime, timedelta

import pytest

from ledger.auth.capabilities import AdminUserCapabilityChecker, Capability
from ledger.models.admin_user import AdminRole, AdminUser


@pytest.mark.asyncio
async def test_any_active_role_row_grants_capability(db_session) -> None:
    """A user with an older cashier row and a newer admin row holds both roles."""
    now = datetime.utcnow()
    db_session.add_all(
        [
            AdminUser(
                user_id="boss", name="Mariam Boss", role=AdminRole.CASHIER, is_active=True,
                created_at=now - timedelta(days=1),
            ),
            AdminUser(user_id="boss", name="Mariam Boss", role=AdminRole.ADMIN, is_active=True, created_at=now),
        ]
    )
    await db_session.flush()

    checker = AdminUserCapabilityChecker(db_session)

    assert await checker.has_capability("boss", Capability.ADMIN)
    assert await checker.has_capability("boss", Capability.CASHIER)


@pytest.mark.asyncio
async def test_inactive_role_row_grants_nothing(db_session) -> None:
    """Deactivated assignments are ignored."""
    db_session.add(AdminUser(user_id="former", name="Former Admin", role=AdminRole.ADMIN, is_active=False))
    await db_session.flush()

    checker = AdminUserCapabilityChecker(db_session)

    assert not await checker.has_capability("former", Capability.ADMIN)
    assert not await checker.has_capability("stranger", Capability.CASHIER)
    assert await checker.has_capability("stranger", Capability.NONE)
    assert await checker.get_actor_name("former") == "User former"

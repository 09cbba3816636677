"""Capability checks delegated to the identity collaborator.

The ledger never decides who is a cashier or an administrator; it asks a
``CapabilityChecker``. The default implementation reads the ``admin_users``
table, and a static variant serves tests and local tooling.
"""
from enum import Enum
from typing import Mapping, Protocol

import structlog
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.admin_user import AdminRole, AdminUser

logger = structlog.get_logger(__name__)


class Capability(str, Enum):
    """Back-office capability held by an actor."""

    ADMIN = "admin"
    CASHIER = "cashier"
    NONE = "none"


class CapabilityChecker(Protocol):
    """Port to the identity/role service."""

    async def has_capability(self, actor_id: str, capability: Capability) -> bool:
        """Return True if the actor currently holds the capability."""
        ...

    async def get_actor_name(self, actor_id: str) -> str:
        """Display name recorded in the approval trail."""
        ...


class StaticCapabilityChecker:
    """Capability checker backed by an in-memory mapping of actor ID to capability."""

    def __init__(self, capabilities: Mapping[str, Capability] | None = None):
        self.capabilities = dict(capabilities or {})

    async def get_capability(self, actor_id: str) -> Capability:
        return self.capabilities.get(actor_id, Capability.NONE)

    async def has_capability(self, actor_id: str, capability: Capability) -> bool:
        if capability == Capability.NONE:
            return True
        return await self.get_capability(actor_id) == capability

    async def get_actor_name(self, actor_id: str) -> str:
        return actor_id


class AdminUserCapabilityChecker:
    """Capability checker reading active role assignments from ``admin_users``."""

    def __init__(self, db: AsyncSession):
        """Initialize checker with database session."""
        self.db = db

    async def _get_admin_user(self, actor_id: str) -> AdminUser | None:
        result = await self.db.execute(
            select(AdminUser)
            .where(AdminUser.user_id == actor_id, AdminUser.is_active.is_(True))
            .order_by(AdminUser.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def has_capability(self, actor_id: str, capability: Capability) -> bool:
        """
        Check whether the actor holds a capability.

        Args:
            actor_id: Actor identity
            capability: Capability to check

        Returns:
            True if an active ``admin_users`` row grants the capability
        """
        if capability == Capability.NONE:
            return True
        # A user may hold several role rows; any active one with the role counts
        granted = await self.db.scalar(
            select(
                exists().where(
                    AdminUser.user_id == actor_id,
                    AdminUser.role == AdminRole(capability.value),
                    AdminUser.is_active.is_(True),
                )
            )
        )
        if not granted:
            logger.debug("capability_not_held", actor_id=actor_id, capability=capability.value)
        return bool(granted)

    async def get_actor_name(self, actor_id: str) -> str:
        """Display name for the approval trail."""
        admin_user = await self._get_admin_user(actor_id)
        if admin_user is not None:
            return admin_user.name
        return f"User {actor_id[:8]}"

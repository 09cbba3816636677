"""Audit logging helper for ledger changes.

Audit rows are written in the caller's transaction so they commit or roll
back together with the change they describe.
"""
from typing import Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.models.audit_log import AuditLog

logger = structlog.get_logger(__name__)


async def log_audit(
    db: AsyncSession,
    entity_type: str,
    entity_id: UUID,
    action: str,
    user_id: Optional[str] = None,
    changes: Optional[dict] = None,
    request_id: Optional[str] = None,
) -> AuditLog:
    """
    Log an audit entry.

    Args:
        db: Database session
        entity_type: Type of entity (order, credit_pool)
        entity_id: Entity UUID
        action: Action performed (create, deactivate, repair)
        user_id: Actor who performed the action
        changes: Dictionary of changes {field: {old: X, new: Y}}
        request_id: Request correlation ID

    Returns:
        The pending audit row
    """
    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user_id,
        changes=changes or {},
        request_id=request_id or str(uuid4()),
    )

    db.add(audit_log)
    await db.flush()

    logger.info(
        "audit_log_created",
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        user_id=user_id,
        change_count=len(changes) if changes else 0,
    )
    return audit_log


def field_change(old: object, new: object) -> dict[str, Optional[str]]:
    """Render one field change the way audit rows store it."""
    return {
        "old": str(old) if old is not None else None,
        "new": str(new) if new is not None else None,
    }

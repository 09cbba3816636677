"""Audit log model for tracking ledger changes."""
from sqlalchemy import Column, String, Uuid

from ledger.models.base import Base, JSONType


class AuditLog(Base):
    """
    Audit log for compliance.

    Tracks order creation and credit pool lifecycle with actor context.
    """

    __tablename__ = "audit_logs"

    entity_type = Column(String, nullable=False, index=True)  # order, credit_pool
    entity_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    action = Column(String, nullable=False)  # create, deactivate, repair
    user_id = Column(String, nullable=True)  # Actor who performed the action
    changes = Column(JSONType, nullable=False, default=dict)  # {field: {old: X, new: Y}}
    request_id = Column(String, nullable=True)  # Correlation ID from request

    def __repr__(self) -> str:
        """String representation."""
        return f"<AuditLog(entity_type={self.entity_type}, entity_id={self.entity_id}, action={self.action})>"

"""Credit usage receipt: one row per debited credit."""
from sqlalchemy import Column, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ledger.models.base import Base


class CreditUsage(Base):
    """
    Immutable audit record of one credit debit.

    Written in the same transaction as the matching pool decrement.
    """

    __tablename__ = "credit_usage"
    __table_args__ = (
        # Keys are scoped per user so two users never share a replay slot
        UniqueConstraint("user_id", "idempotency_key", name="uq_credit_usage_user_idempotency_key"),
    )

    user_id = Column(String, nullable=False, index=True)
    credit_pool_id = Column(Uuid(as_uuid=True), ForeignKey("credit_pools.id"), nullable=False, index=True)
    order_id = Column(Uuid(as_uuid=True), nullable=False)  # Denormalized for audit
    order_number = Column(String(32), nullable=False)
    subject_id = Column(String, nullable=False, index=True)  # e.g. the simulation run
    label = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=True)  # Optional replay guard

    # Relationships
    credit_pool = relationship("CreditPool", back_populates="usages")

    def __repr__(self) -> str:
        """String representation."""
        return f"<CreditUsage(id={self.id}, pool_id={self.credit_pool_id}, subject_id={self.subject_id})>"

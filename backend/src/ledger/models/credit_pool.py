"""Credit pool model: the credits granted by one authorized order."""
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import relationship

from ledger.models.base import Base


class CreditPool(Base):
    """
    Bounded allotment of credits originating from exactly one authorized order.

    Only ``remaining_credits`` and ``is_active`` ever change after creation.
    ``created_at`` is the FIFO key for consumption.
    """

    __tablename__ = "credit_pools"
    __table_args__ = (
        CheckConstraint("total_credits > 0", name="ck_credit_pools_total_positive"),
        CheckConstraint(
            "remaining_credits >= 0 AND remaining_credits <= total_credits",
            name="ck_credit_pools_remaining_bounds",
        ),
        Index("ix_credit_pools_user_fifo", "user_id", "created_at", "id"),
    )

    user_id = Column(String, nullable=False, index=True)
    # Unique: at most one pool per order, even under concurrent retries
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, unique=True)
    order_number = Column(String(32), nullable=False)
    plan_id = Column(String, nullable=False)
    plan_name = Column(String, nullable=True)
    total_credits = Column(Integer, nullable=False)
    remaining_credits = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    deactivated_at = Column(DateTime, nullable=True)

    # Relationships
    order = relationship("Order")
    usages = relationship("CreditUsage", back_populates="credit_pool")

    @property
    def is_eligible(self) -> bool:
        """Pool can be debited."""
        return bool(self.is_active) and self.remaining_credits > 0

    @property
    def used_credits(self) -> int:
        """Credits already consumed from this pool."""
        return self.total_credits - self.remaining_credits

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<CreditPool(id={self.id}, user_id={self.user_id}, "
            f"remaining={self.remaining_credits}/{self.total_credits}, active={self.is_active})>"
        )

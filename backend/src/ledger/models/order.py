"""Order model for credit plan purchases and their approval trail."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from ledger.models.base import Base, enum_values


class OrderStatus(str, enum.Enum):
    """Order approval status."""

    PENDING_VALIDATION = "pending_validation"
    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentMethod(str, enum.Enum):
    """How the buyer paid for the order."""

    CAISSE_OIC = "caisse_oic"
    STRIPE = "stripe"
    LYGOS = "lygos"


class ValidationType(str, enum.Enum):
    """Kind of approval-trail entry."""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CANCELLATION = "cancellation"
    EXPIRATION = "expiration"


class Order(Base):
    """
    Purchase intent for a credit plan.

    Moves pending_validation -> validated -> authorized through the cashier and
    administrator approval chain. Rows are never deleted; cancelled and expired
    are terminal soft states.
    """

    __tablename__ = "orders"

    order_number = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=False, index=True)  # Buyer identity
    user_email = Column(String, nullable=True)
    user_name = Column(String, nullable=True)
    plan_id = Column(String, nullable=False)
    plan_name = Column(String, nullable=True)
    plan_credits = Column(Integer, nullable=False)  # Credits granted once authorized
    amount = Column(Integer, nullable=False)  # Minor currency units
    currency = Column(String(3), nullable=False, default="XOF")
    payment_method = Column(
        SQLEnum(PaymentMethod, name="paymentmethod", values_callable=enum_values),
        nullable=False,
    )
    status = Column(
        SQLEnum(OrderStatus, name="orderstatus", values_callable=enum_values),
        nullable=False,
        default=OrderStatus.PENDING_VALIDATION,
        index=True,
    )
    validated_at = Column(DateTime, nullable=True)
    validated_by = Column(String, nullable=True, index=True)  # Cashier or admin ID
    authorized_at = Column(DateTime, nullable=True)
    authorized_by = Column(String, nullable=True, index=True)  # Admin ID
    receipt_number = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    validations = relationship(
        "OrderValidation",
        back_populates="order",
        order_by="OrderValidation.created_at",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status.value})>"


class OrderValidation(Base):
    """
    Approval trail for an order.

    One row per successful status transition, recording who performed it.
    """

    __tablename__ = "order_validations"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    validator_id = Column(String, nullable=False)
    validator_name = Column(String, nullable=True)
    type = Column(
        SQLEnum(ValidationType, name="validationtype", values_callable=enum_values),
        nullable=False,
    )
    from_status = Column(String, nullable=False)
    to_status = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    order = relationship("Order", back_populates="validations")

    def __repr__(self) -> str:
        """String representation."""
        return f"<OrderValidation(order_id={self.order_id}, type={self.type.value}, by={self.validator_id})>"

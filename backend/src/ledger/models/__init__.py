"""SQLAlchemy ORM models for the credit ledger."""
# Import all models here to ensure they are registered with Alembic

from ledger.models.base import Base
from ledger.models.order import Order, OrderStatus, OrderValidation, PaymentMethod, ValidationType
from ledger.models.credit_pool import CreditPool
from ledger.models.credit_usage import CreditUsage
from ledger.models.admin_user import AdminRole, AdminUser
from ledger.models.audit_log import AuditLog

__all__ = [
    "Base",
    "Order",
    "OrderStatus",
    "OrderValidation",
    "PaymentMethod",
    "ValidationType",
    "CreditPool",
    "CreditUsage",
    "AdminRole",
    "AdminUser",
    "AuditLog",
]

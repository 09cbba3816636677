"""Back-office users holding cashier or administrator roles."""
import enum

from sqlalchemy import Boolean, Column, Enum as SQLEnum, String

from ledger.models.base import Base, enum_values


class AdminRole(str, enum.Enum):
    """Back-office role."""

    ADMIN = "admin"
    CASHIER = "cashier"


class AdminUser(Base):
    """Role assignment consulted by the capability checker."""

    __tablename__ = "admin_users"

    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(SQLEnum(AdminRole, name="adminrole", values_callable=enum_values), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<AdminUser(user_id={self.user_id}, role={self.role.value}, active={self.is_active})>"

"""Base model with common fields for all entities."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from ledger.database import Base as DeclarativeBase

# JSONB on PostgreSQL, plain JSON elsewhere (test-suite runs on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_values(enum_cls) -> list[str]:  # noqa: ANN001
    """Persist enum values (lowercase) instead of member names."""
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base model class with common fields."""

    __abstract__ = True

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

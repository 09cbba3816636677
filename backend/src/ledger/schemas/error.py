"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    Business-rule failures carry a specific code and remediation hint;
    transient store failures carry a generic "try again" message.
    """

    error: str = Field(..., description="Error type (e.g., 'NotFound', 'InvalidTransition', 'NoCreditsAvailable')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")


class ErrorCode:
    """Standard error codes used across the API."""

    VALIDATION_ERROR = "validation_error"
    DATABASE_ERROR = "database_error"
    TRANSIENT_STORE_ERROR = "transient_store_error"
    INTERNAL_ERROR = "internal_error"


REMEDIATION_HINTS = {
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
    ErrorCode.TRANSIENT_STORE_ERROR: (
        "The ledger could not confirm the outcome. Re-fetch the order or credit status before retrying."
    ),
}

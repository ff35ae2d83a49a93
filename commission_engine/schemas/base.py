"""
Base Schema Classes for Pydantic Models

RULE: All schemas that read from ORM models MUST inherit from BaseResponseSchema.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID
from pydantic import AfterValidator, BaseModel, ConfigDict


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


class BaseResponseSchema(BaseModel):
    """
    Base class for all schemas that are built from ORM models.

    Usage:
        class PaymentResponse(BaseResponseSchema):
            id: UUID
            recipient_id: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    These schemas accept string UUIDs from clients and convert to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


# Type aliases for common UUID patterns
OptionalUUID = Optional[UUID]

"""Shared schema configuration and mixins for read models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Read model validated straight from ORM rows."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class IDMixin(BaseModel):
    id: UUID


class CreatedAtMixin(BaseModel):
    created_at: datetime


class TimestampMixin(CreatedAtMixin):
    """Rows that track their last modification."""

    updated_at: datetime

"""Pydantic schemas for AI usage limits."""

from pydantic import BaseModel


class UsageResponse(BaseModel):
    """Remaining AI messages for today."""

    remaining: int
    limit: int
    is_admin: bool

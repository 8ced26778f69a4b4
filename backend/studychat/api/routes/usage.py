"""API route for the daily AI message allowance."""

from fastapi import APIRouter

from studychat.api.deps import CurrentUserId, UsageLimiterDep
from studychat.schemas.usage import UsageResponse

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("", response_model=UsageResponse)
async def get_usage(limiter: UsageLimiterDep, user_id: CurrentUserId):
    """Remaining AI messages for today."""
    usage = await limiter.status(user_id)
    return UsageResponse(remaining=usage.remaining, limit=usage.limit, is_admin=usage.is_admin)

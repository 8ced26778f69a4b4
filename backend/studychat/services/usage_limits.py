"""Daily AI message allowance per user (admins are unlimited)."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from studychat.db.models import AppRole, UserDailyLimit
from studychat.errors import DailyLimitReached
from studychat.services.conversation_store import ProfileDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageStatus:
    remaining: int
    limit: int
    is_admin: bool


class UsageLimiter(Protocol):
    async def status(self, user_id: UUID) -> UsageStatus: ...

    async def ensure_allowance(self, user_id: UUID) -> UsageStatus: ...

    async def consume(self, user_id: UUID) -> UsageStatus: ...


class SqlUsageLimiter:
    """Counts messages per user per day in ``user_daily_limits``."""

    def __init__(
        self,
        db: AsyncSession,
        profiles: ProfileDirectory,
        daily_limit: int,
        timezone: str = "Asia/Tehran",
    ):
        self.db = db
        self.profiles = profiles
        self.daily_limit = daily_limit
        self.timezone = ZoneInfo(timezone)

    def today(self) -> date:
        return datetime.now(self.timezone).date()

    async def _is_admin(self, user_id: UUID) -> bool:
        return await self.profiles.get_role(user_id) == AppRole.ADMIN.value

    async def _current_record(self, user_id: UUID) -> UserDailyLimit:
        """Get or create today's record, resetting the counter on a new day."""
        today = self.today()
        record = await self.db.get(UserDailyLimit, user_id)
        if record is None:
            record = UserDailyLimit(user_id=user_id, messages_today=0, last_reset_date=today)
            self.db.add(record)
            await self.db.flush()
        elif record.last_reset_date != today:
            record.messages_today = 0
            record.last_reset_date = today
        return record

    async def status(self, user_id: UUID) -> UsageStatus:
        if await self._is_admin(user_id):
            return UsageStatus(remaining=self.daily_limit, limit=self.daily_limit, is_admin=True)
        record = await self._current_record(user_id)
        await self.db.commit()
        return UsageStatus(
            remaining=max(0, self.daily_limit - record.messages_today),
            limit=self.daily_limit,
            is_admin=False,
        )

    async def ensure_allowance(self, user_id: UUID) -> UsageStatus:
        """
        Check that a message is left today without counting one.

        Raises:
            DailyLimitReached: if today's allowance is already used up
        """
        usage = await self.status(user_id)
        if not usage.is_admin and usage.remaining == 0:
            logger.info("User %s is out of messages for today", user_id)
            raise DailyLimitReached()
        return usage

    async def consume(self, user_id: UUID) -> UsageStatus:
        """
        Count one AI message.

        Raises:
            DailyLimitReached: if today's allowance is already used up
        """
        if await self._is_admin(user_id):
            return UsageStatus(remaining=self.daily_limit, limit=self.daily_limit, is_admin=True)

        record = await self._current_record(user_id)
        if record.messages_today >= self.daily_limit:
            await self.db.commit()
            logger.info("User %s reached the daily limit of %d messages", user_id, self.daily_limit)
            raise DailyLimitReached()

        record.messages_today += 1
        await self.db.commit()
        return UsageStatus(
            remaining=max(0, self.daily_limit - record.messages_today),
            limit=self.daily_limit,
            is_admin=False,
        )

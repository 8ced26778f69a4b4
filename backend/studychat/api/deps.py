"""
FastAPI dependencies.

Key patterns:
1. Collaborators (store, relay, context builder, limiter) are built per
   request from the session and app state, so tests swap them through
   ``app.dependency_overrides``.
2. Users are authenticated by the external auth service; we only verify the
   JWT it issued and read the user id from its ``sub`` claim.
3. No global "current user" state - always pass user ids explicitly.
"""

import logging
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from studychat.config import get_settings
from studychat.db.session import get_db
from studychat.services.change_feed import InMemoryChangeFeed
from studychat.services.context_builder import ContextBuilder
from studychat.services.conversation_store import (
    ConversationStore,
    MaterialsCatalog,
    ProfileDirectory,
    SqlConversationStore,
    SqlMaterialsCatalog,
    SqlProfileDirectory,
)
from studychat.services.gateway_relay import GatewayRelay
from studychat.services.storage import StorageService
from studychat.services.usage_limits import SqlUsageLimiter, UsageLimiter

logger = logging.getLogger(__name__)
settings = get_settings()

DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# JWT UTILITIES
# =============================================================================


def decode_access_token(token: str) -> UUID | None:
    """
    Decode and validate an access token issued by the auth service.

    Returns user_id if valid, None if invalid/expired or if verification is
    not configured.
    """
    if not settings.jwt_secret_key:
        logger.debug("JWT_SECRET_KEY not set, ignoring bearer token")
        return None
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
        user_id_str = payload.get("sub")
        if user_id_str is None:
            return None
        return UUID(user_id_str)
    except (JWTError, ValueError):
        return None


def _bearer_token(authorization: str | None) -> str | None:
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    return None


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_optional_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> UUID | None:
    """User id from a valid bearer token, or None for anonymous callers."""
    token = _bearer_token(authorization)
    return decode_access_token(token) if token else None


async def get_current_user_id(
    user_id: Annotated[UUID | None, Depends(get_optional_user_id)],
) -> UUID:
    """
    Require an authenticated user.

    Raises 401 if the token is missing, invalid, or expired.
    """
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
OptionalUserId = Annotated[UUID | None, Depends(get_optional_user_id)]


# =============================================================================
# SERVICE DEPENDENCIES
# =============================================================================


def get_change_feed(request: Request) -> InMemoryChangeFeed:
    return request.app.state.change_feed


def get_gateway_relay(request: Request) -> GatewayRelay:
    """Relay created at startup (see main.lifespan)."""
    return request.app.state.gateway_relay


@lru_cache
def get_storage_service() -> StorageService:
    return StorageService(get_settings())


ChangeFeedDep = Annotated[InMemoryChangeFeed, Depends(get_change_feed)]
GatewayRelayDep = Annotated[GatewayRelay, Depends(get_gateway_relay)]
StorageDep = Annotated[StorageService, Depends(get_storage_service)]


def get_conversation_store(db: DbSession, feed: ChangeFeedDep) -> ConversationStore:
    return SqlConversationStore(db, feed)


def get_profile_directory(db: DbSession) -> ProfileDirectory:
    return SqlProfileDirectory(db)


def get_materials_catalog(db: DbSession, storage: StorageDep) -> MaterialsCatalog:
    return SqlMaterialsCatalog(db, storage, settings.materials_bucket)


ProfileDirectoryDep = Annotated[ProfileDirectory, Depends(get_profile_directory)]


def get_context_builder(
    profiles: ProfileDirectoryDep,
    catalog: Annotated[MaterialsCatalog, Depends(get_materials_catalog)],
) -> ContextBuilder:
    return ContextBuilder(
        profiles,
        catalog,
        timezone=settings.context_timezone,
        materials_limit=settings.materials_context_limit,
    )


def get_usage_limiter(db: DbSession, profiles: ProfileDirectoryDep) -> UsageLimiter:
    return SqlUsageLimiter(
        db,
        profiles,
        daily_limit=settings.daily_message_limit,
        timezone=settings.context_timezone,
    )


ConversationStoreDep = Annotated[ConversationStore, Depends(get_conversation_store)]
ContextBuilderDep = Annotated[ContextBuilder, Depends(get_context_builder)]
UsageLimiterDep = Annotated[UsageLimiter, Depends(get_usage_limiter)]

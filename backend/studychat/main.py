"""
StudyChat FastAPI Application Entry Point.

Run with: uvicorn studychat.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers

from studychat.api.routes import (
    conversations,
    messages,
    relay,
    uploads,
    usage,
)
from studychat.config import get_settings
from studychat.db.session import dispose_engine
from studychat.errors import GENERIC_AI_ERROR, ChatRelayError
from studychat.services.change_feed import InMemoryChangeFeed
from studychat.services.gateway_relay import GatewayConfig, GatewayRelay

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    # Startup: a missing gateway credential stops the app here
    app.state.gateway_relay = GatewayRelay(GatewayConfig.from_settings(settings))
    yield
    # Shutdown
    await app.state.gateway_relay.aclose()
    await dispose_engine()


class EmptyPreflightCORSMiddleware(CORSMiddleware):
    """CORS middleware whose accepted preflight is an empty 200."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != status.HTTP_200_OK:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=status.HTTP_200_OK, headers=headers)


def cors_headers(request: Request) -> dict[str, str]:
    """
    CORS headers for responses built outside the CORS middleware.

    The catch-all error handler runs in Starlette's outermost middleware,
    so its responses never pass through ``EmptyPreflightCORSMiddleware``.
    """
    origin = request.headers.get("origin")
    if origin is None:
        return {}
    if "*" in settings.cors_origins:
        return {"Access-Control-Allow-Origin": "*"}
    if origin in settings.cors_origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Vary": "Origin",
        }
    return {}


app = FastAPI(
    title=settings.app_name,
    description="Educational AI Chat API",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.change_feed = InMemoryChangeFeed()

# CORS middleware (browsers reject credentials with a wildcard origin)
app.add_middleware(
    EmptyPreflightCORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatRelayError)
async def chat_relay_error_handler(request: Request, exc: ChatRelayError) -> JSONResponse:
    """Render relay errors as ``{"error": <localized message>}``."""
    logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.user_message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Answer any other failure with the generic message, never internals."""
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": GENERIC_AI_ERROR},
        headers=cors_headers(request),
    )


# Include routers
app.include_router(relay.router)
app.include_router(conversations.router)
app.include_router(messages.router)
app.include_router(uploads.router)
app.include_router(usage.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}

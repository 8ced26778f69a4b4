"""Chat relay endpoint: forwards the conversation to the AI gateway as a stream."""

import logging

from fastapi import APIRouter, Response, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from studychat.api.deps import (
    ContextBuilderDep,
    GatewayRelayDep,
    OptionalUserId,
    UsageLimiterDep,
)
from studychat.schemas.chat import ErrorResponse, RelayRequest
from studychat.services.message_transformer import to_gateway_messages

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])

_ERROR_RESPONSES = {
    status.HTTP_402_PAYMENT_REQUIRED: {"model": ErrorResponse},
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


@router.options("/chat")
async def relay_preflight() -> Response:
    """Answer a bare OPTIONS with an empty 200 (browser preflights stop at the CORS middleware)."""
    return Response(status_code=status.HTTP_200_OK)


@router.post("/chat", responses=_ERROR_RESPONSES)
async def relay_chat(
    request: RelayRequest,
    relay: GatewayRelayDep,
    context_builder: ContextBuilderDep,
    limiter: UsageLimiterDep,
    token_user_id: OptionalUserId,
):
    """
    Relay a conversation to the AI gateway and stream the answer back.

    The response body is the gateway's event stream with any transfer
    compression removed: ``data: <json>`` events terminated by
    ``data: [DONE]``. Errors are returned as ``{"error": <localized message>}``
    with status 429, 402 or 500 (see the error handlers in main).

    The daily allowance is charged only once the gateway accepted the call.
    """
    user_id = token_user_id or request.user_id
    if user_id is not None:
        await limiter.ensure_allowance(user_id)

    system_prompt = await context_builder.build(user_id)
    messages = to_gateway_messages(request.messages)

    upstream = await relay.open_stream(system_prompt, messages)
    if user_id is not None:
        try:
            await limiter.consume(user_id)
        except Exception:
            await upstream.aclose()
            raise

    logger.info(
        "Relaying %d messages for %s", len(messages), user_id or "anonymous caller"
    )
    return StreamingResponse(
        upstream.aiter_bytes(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
        background=BackgroundTask(upstream.aclose),
    )

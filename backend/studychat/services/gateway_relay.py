"""Streaming relay to the AI gateway (OpenAI-compatible chat completions)."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from studychat.config import Settings
from studychat.errors import ConfigurationError, GatewayError, classify_status
from studychat.services.message_transformer import has_image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayConfig:
    """Everything the relay needs to talk to the gateway."""

    url: str
    api_key: str | None
    text_model: str
    vision_model: str
    text_temperature: float
    vision_temperature: float
    max_tokens: int
    timeout_seconds: float = 120.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        return cls(
            url=settings.ai_gateway_url,
            api_key=settings.ai_gateway_api_key,
            text_model=settings.llm_text_model,
            vision_model=settings.llm_vision_model,
            text_temperature=settings.llm_text_temperature,
            vision_temperature=settings.llm_vision_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.ai_gateway_timeout_seconds,
        )


@dataclass(frozen=True)
class GenerationParams:
    """Model variant and sampling settings for one request."""

    model: str
    temperature: float
    max_tokens: int


def select_generation_params(
    messages: list[dict[str, Any]], config: GatewayConfig
) -> GenerationParams:
    """
    Pick the model for a request.

    Image analysis goes to the image-capable model with low temperature,
    plain text to the faster model.
    """
    if has_image(messages):
        return GenerationParams(
            model=config.vision_model,
            temperature=config.vision_temperature,
            max_tokens=config.max_tokens,
        )
    return GenerationParams(
        model=config.text_model,
        temperature=config.text_temperature,
        max_tokens=config.max_tokens,
    )


class GatewayRelay:
    """
    Opens streamed completions against the gateway.

    Stateless per request; the underlying HTTP client is shared and closed
    with ``aclose``.
    """

    def __init__(self, config: GatewayConfig, client: httpx.AsyncClient | None = None):
        if not config.api_key:
            raise ConfigurationError("AI_GATEWAY_API_KEY is not configured")
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds, connect=10.0)
        )

    def build_payload(self, system_prompt: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        """Assemble the chat-completion request body."""
        params = select_generation_params(messages, self.config)
        return {
            "model": params.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "stream": True,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }

    async def open_stream(
        self, system_prompt: str, messages: list[dict[str, Any]]
    ) -> httpx.Response:
        """
        Start a streamed completion and return the open response.

        The caller owns the returned response and must ``aclose`` it.

        Raises:
            RateLimited: gateway answered 429
            QuotaExhausted: gateway answered 402
            GatewayError: any other failure
        """
        payload = self.build_payload(system_prompt, messages)
        request = self.client.build_request(
            "POST",
            self.config.url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.exception("AI gateway request failed")
            raise GatewayError(f"AI gateway request failed: {e}") from e

        if response.is_success:
            logger.debug("AI gateway stream opened (model=%s)", payload["model"])
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        finally:
            await response.aclose()

        error = classify_status(response.status_code, body)
        if isinstance(error, GatewayError):
            logger.error("AI gateway error: %s %s", response.status_code, body)
        else:
            logger.warning("AI gateway refused request with %s", response.status_code)
        raise error

    async def aclose(self) -> None:
        await self.client.aclose()

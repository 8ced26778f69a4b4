"""
Error taxonomy for the chat relay.

Every error carries the HTTP status the relay endpoint answers with and a
localized message that is safe to show to the end user. Raw gateway bodies
are kept on the exception for logging only.
"""

from fastapi import status

GENERIC_AI_ERROR = "خطا در دریافت پاسخ از هوش مصنوعی"


class ChatRelayError(Exception):
    """Base class for errors raised while relaying a chat turn."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    user_message: str = GENERIC_AI_ERROR

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.user_message)
        self.detail = detail


class ConfigurationError(ChatRelayError):
    """A required secret (the gateway credential) is missing."""


class RateLimited(ChatRelayError):
    """Gateway answered 429. Transient, the user may retry later."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    user_message = "محدودیت تعداد درخواست‌ها. لطفاً چند لحظه صبر کنید و دوباره تلاش کنید."


class QuotaExhausted(ChatRelayError):
    """Gateway answered 402. Needs operator action."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    user_message = "اعتبار استفاده از هوش مصنوعی تمام شده است. لطفاً با پشتیبانی تماس بگیرید."


class GatewayError(ChatRelayError):
    """Any other non-2xx gateway answer or a transport failure."""

    def __init__(self, detail: str | None = None, *, upstream_status: int | None = None, body: str = ""):
        super().__init__(detail)
        self.upstream_status = upstream_status
        self.body = body


class DailyLimitReached(ChatRelayError):
    """The user used up today's AI message allowance."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    user_message = "محدودیت روزانه شما تمام شده است. فردا دوباره تلاش کنید."


class StreamParseAnomaly(ChatRelayError):
    """The event stream could not be decoded (undecodable data piled up past the buffer cap)."""


class PersistenceFailure(ChatRelayError):
    """The reply streamed fine but saving it failed."""

    user_message = "پاسخ نمایش داده شد اما ذخیره آن با خطا مواجه شد."


def classify_status(status_code: int, body: str = "") -> ChatRelayError:
    """Map a non-2xx relay or gateway status to the matching error."""
    if status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        return RateLimited(body or None)
    if status_code == status.HTTP_402_PAYMENT_REQUIRED:
        return QuotaExhausted(body or None)
    return GatewayError(
        f"AI gateway returned {status_code}",
        upstream_status=status_code,
        body=body,
    )
